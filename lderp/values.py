"""Coercion of raw directory attribute values into plain Python values"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable

from addict import Dict as EntryDict

# FILETIME counts 100ns ticks from 1601-01-01
FILETIME_TICKS_PER_MILLISECOND = 10_000
FILETIME_EPOCH_OFFSET_MILLISECONDS = 11_644_473_600_000
FILETIME_NEVER = 9_223_372_036_854_775_807

EDIRECTORY_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def filetime_to_datetime(value):
    """Decode a Windows FILETIME tick count into an aware UTC datetime

    ``0``, the "never" sentinel and counts past the year 9999 decode to None.
    Anything that isn't an integer is handed back untouched.
    """
    try:
        ticks = int(value)
    except (TypeError, ValueError):
        return value
    if ticks <= 0 or ticks >= FILETIME_NEVER:
        return None
    milliseconds = (
        ticks / FILETIME_TICKS_PER_MILLISECOND - FILETIME_EPOCH_OFFSET_MILLISECONDS
    )
    try:
        return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(
            milliseconds=milliseconds
        )
    except OverflowError:
        return None


def edirectory_time_to_datetime(value):
    """Decode a yyyyMMddHHmmssZ timestamp, dropping the zone marker"""
    if not isinstance(value, str):
        return value
    try:
        parsed = datetime.strptime(value[:14], EDIRECTORY_TIMESTAMP_FORMAT)
    except ValueError:
        return value
    return parsed.replace(tzinfo=timezone.utc)


class ValueCoercer:
    """Turns the string values a directory returns into booleans and friends

    Subclasses extend ``fix_value`` for attributes their directory encodes
    in its own way, calling up to this class first.
    """

    def fix_value(self, attribute: str, value):
        # pylint: disable=unused-argument
        if isinstance(value, str):
            token = value.upper()
            if token == "TRUE":
                return True
            if token == "FALSE":
                return False
        return value

    def format_entry(self, dn: str, attributes: Dict[str, Iterable]) -> EntryDict:
        """Coerce every attribute of a raw entry

        Multi-valued attributes come back as lists, single values are unwrapped
        and attributes without values are left out.
        """
        entry = EntryDict(dn=dn)
        for attribute, raw in attributes.items():
            if isinstance(raw, (list, tuple)):
                values = [self.fix_value(attribute, value) for value in raw]
            else:
                values = [self.fix_value(attribute, raw)]
            if not values:
                continue
            entry[attribute] = values if len(values) > 1 else values[0]
        return entry


class ActiveDirectoryValueCoercer(ValueCoercer):
    """Decodes Active Directory's FILETIME logon stamps"""

    filetime_attributes = {"lastLogon", "lastLogonTimestamp"}

    def fix_value(self, attribute: str, value):
        value = super().fix_value(attribute, value)
        if attribute in self.filetime_attributes:
            return filetime_to_datetime(value)
        return value


class EDirectoryValueCoercer(ValueCoercer):
    """Decodes eDirectory login timestamps"""

    timestamp_attributes = {"loginTime", "lastLoginTime"}

    def fix_value(self, attribute: str, value):
        value = super().fix_value(attribute, value)
        if attribute in self.timestamp_attributes:
            return edirectory_time_to_datetime(value)
        return value
