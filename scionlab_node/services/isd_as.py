"""
ISD-AS identifier handling

Splits an identifier such as ``16-ffaa_0_1002`` into its ISD and AS parts
so that service instance names and config paths can be templated from typed
components instead of string placeholders.
"""

import re
from dataclasses import dataclass

from ..errors import ValidationError


_ISD_RE = re.compile(r'^[0-9]+$')
_AS_DECIMAL_RE = re.compile(r'^[0-9]+$')
_AS_HEX_RE = re.compile(r'^[0-9a-fA-F]{1,4}([_:])[0-9a-fA-F]{1,4}\1[0-9a-fA-F]{1,4}$')

MAX_ISD = 0xFFFF
MAX_DECIMAL_AS = 2 ** 32 - 1


@dataclass(frozen=True)
class ISDAS:
    """Decomposed ISD-AS identifier"""
    isd: int
    as_id: str  # file format, ':' replaced by '_'

    @property
    def file_format(self) -> str:
        """Identifier as used in file names and unit instances"""
        return f"{self.isd}-{self.as_id}"

    @property
    def isd_dir(self) -> str:
        return f"ISD{self.isd}"

    @property
    def as_dir(self) -> str:
        return f"AS{self.as_id}"

    def __str__(self):
        return self.file_format

    @classmethod
    def parse(cls, identifier: str) -> "ISDAS":
        """
        Parse and validate an identifier

        Args:
            identifier: ``<isd>-<as>``, AS either decimal or three hex
                groups separated by ``_`` or ``:``

        Returns:
            Decomposed identifier

        Raises:
            ValidationError: if the identifier is missing or malformed
        """
        if identifier is None:
            raise ValidationError('identifier')
        if not isinstance(identifier, str):
            raise ValidationError('identifier', f"identifier must be a string, got {type(identifier).__name__}")

        isd_part, sep, as_part = identifier.strip().partition('-')
        if not sep or not isd_part or not as_part:
            raise ValidationError('identifier', f"invalid ISD-AS identifier {identifier!r}")

        if not _ISD_RE.match(isd_part) or int(isd_part) > MAX_ISD:
            raise ValidationError('identifier', f"invalid ISD in {identifier!r}")

        if _AS_DECIMAL_RE.match(as_part):
            if int(as_part) > MAX_DECIMAL_AS:
                raise ValidationError('identifier', f"decimal AS out of range in {identifier!r}")
            as_id = as_part
        elif _AS_HEX_RE.match(as_part):
            as_id = as_part.replace(':', '_').lower()
        else:
            raise ValidationError('identifier', f"invalid AS in {identifier!r}")

        return cls(isd=int(isd_part), as_id=as_id)
