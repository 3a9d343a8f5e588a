from __future__ import annotations

import enum
import itertools
import math
import re
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

from errors import RowFormatError, ValidationError

ROW_WIDTH = 8

RawRow = tuple

_LOAD_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?|-?\.\d+)\s*(.*?)\s*$")


class LoadUnit(enum.Enum):
    """How ``load_value`` is measured; the value is the persisted suffix."""

    WEIGHT = "kg"
    DURATION = "s"


@dataclass(frozen=True)
class RemoteId:
    """1-based physical row position in the backing table (header excluded)."""

    row: int

    def __post_init__(self) -> None:
        if self.row < 1:
            raise ValueError("row must be positive")

    def __str__(self) -> str:
        return str(self.row)


@dataclass(frozen=True)
class ProvisionalId:
    """Local placeholder for an entry whose row position is not known yet."""

    token: str

    def __str__(self) -> str:
        return self.token


EntryId = Union[RemoteId, ProvisionalId]

_provisional_counter = itertools.count(1)


def new_provisional_id() -> ProvisionalId:
    """Return a fresh id that compares unequal to every earlier one."""
    return ProvisionalId(f"temp-{next(_provisional_counter)}")


def format_number(value: float | int) -> str:
    """Render ``value`` as plain decimal text without a trailing ``.0``.

    Fractions never use exponent notation, so ``0.00005`` stays readable by
    ``decode_load``.
    """
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"cannot store a non-finite number: {value!r}")
    if number.is_integer():
        return str(int(number))
    return format(Decimal(repr(number)), "f")


def encode_load(value: float, unit: LoadUnit) -> str:
    return f"{format_number(value)}{unit.value}"


def decode_load(text: str) -> tuple[float, LoadUnit]:
    """Split ``"60kg"`` or ``"45s"`` into magnitude and unit.

    A bare number is read as a weight.
    """
    match = _LOAD_PATTERN.match(str(text))
    if not match:
        raise RowFormatError(f"invalid load value: {text!r}")
    magnitude, suffix = match.groups()
    if not suffix:
        return float(magnitude), LoadUnit.WEIGHT
    try:
        unit = LoadUnit(suffix.lower())
    except ValueError:
        raise RowFormatError(f"unknown load unit: {suffix!r}") from None
    return float(magnitude), unit


def compose_exercise_name(modifiers: Iterable[str], verbs: Iterable[str]) -> str:
    """Join modifier tokens then verb tokens with single spaces."""
    tokens = [t.strip() for t in itertools.chain(modifiers, verbs)]
    return " ".join(t for t in tokens if t)


@dataclass(frozen=True)
class Menu:
    """Vocabulary used to build exercise names."""

    modifiers: tuple[str, ...] = ()
    verbs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "modifiers", _clean_tokens(self.modifiers))
        object.__setattr__(self, "verbs", _clean_tokens(self.verbs))

    @property
    def is_empty(self) -> bool:
        return not self.modifiers and not self.verbs

    def to_dict(self) -> dict:
        return {"modifiers": list(self.modifiers), "verbs": list(self.verbs)}

    @classmethod
    def from_dict(cls, data: dict) -> "Menu":
        return cls(
            tuple(data.get("modifiers") or ()),
            tuple(data.get("verbs") or ()),
        )


def _clean_tokens(tokens: Iterable[str]) -> tuple[str, ...]:
    return tuple(str(t).strip() for t in tokens if t is not None and str(t).strip())


def _to_int(value, name: str) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise RowFormatError(f"{name} is not a number: {value!r}") from None
    if not number.is_integer():
        raise RowFormatError(f"{name} is not a whole number: {value!r}")
    return int(number)


def _to_float(value, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise RowFormatError(f"{name} is not a number: {value!r}") from None
    if not math.isfinite(number):
        raise RowFormatError(f"{name} is not a finite number: {value!r}")
    return number


def _whole(value, name: str) -> int:
    if isinstance(value, int):
        return value
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"{name} must be a whole number, got {value!r}")
    return int(number)


def _finite(value, name: str) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{name} must be a finite number, got {value!r}")
    return number


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass(frozen=True)
class Entry:
    """One logged set."""

    id: EntryId
    timestamp: int
    exercise_name: str
    set_number: int
    load_value: float
    load_unit: LoadUnit
    reps: int
    effort: float
    rest_seconds: Optional[int] = None
    note: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "exercise_name", " ".join(str(self.exercise_name).split()))
        object.__setattr__(self, "timestamp", int(self.timestamp))
        object.__setattr__(self, "set_number", int(self.set_number))
        object.__setattr__(self, "load_value", _finite(self.load_value, "load_value"))
        object.__setattr__(self, "reps", _whole(self.reps, "reps"))
        object.__setattr__(self, "effort", _finite(self.effort, "effort"))
        if _blank(self.rest_seconds):
            object.__setattr__(self, "rest_seconds", None)
        else:
            object.__setattr__(
                self, "rest_seconds", _whole(self.rest_seconds, "rest_seconds")
            )
        if _blank(self.note):
            object.__setattr__(self, "note", None)

    @property
    def is_persisted(self) -> bool:
        return isinstance(self.id, RemoteId)

    @property
    def encoded_load(self) -> str:
        return encode_load(self.load_value, self.load_unit)

    def to_row(self) -> RawRow:
        """Encode the entry as the 8-column row written to the store."""
        return (
            str(self.timestamp),
            self.exercise_name,
            str(self.set_number),
            self.encoded_load,
            str(self.reps),
            format_number(self.effort),
            "" if self.rest_seconds is None else str(self.rest_seconds),
            self.note or "",
        )

    @classmethod
    def from_row(cls, row: Sequence, entry_id: EntryId) -> "Entry":
        """Decode a stored row; short rows are padded with blanks."""
        cells = list(row)[:ROW_WIDTH]
        cells += [""] * (ROW_WIDTH - len(cells))
        timestamp, name, set_number, load, reps, effort, rest, note = cells
        for label, value in (
            ("timestamp", timestamp),
            ("exercise name", name),
            ("load", load),
            ("reps", reps),
            ("effort", effort),
        ):
            if _blank(value):
                raise RowFormatError(f"row {entry_id} is missing {label}")
        load_value, load_unit = decode_load(load)
        return cls(
            id=entry_id,
            timestamp=_to_int(timestamp, "timestamp"),
            exercise_name=str(name),
            set_number=1 if _blank(set_number) else _to_int(set_number, "set"),
            load_value=load_value,
            load_unit=load_unit,
            reps=_to_int(reps, "reps"),
            effort=_to_float(effort, "effort"),
            rest_seconds=None if _blank(rest) else _to_int(rest, "rest"),
            note=None if _blank(note) else str(note),
        )

    def with_patch(self, patch: dict) -> "Entry":
        """Return a copy with ``patch`` applied; ``id`` cannot be patched."""
        unknown = sorted(set(patch) - PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"cannot patch fields: {', '.join(unknown)}", unknown
            )
        values = dict(patch)
        if "load_unit" in values and not isinstance(values["load_unit"], LoadUnit):
            try:
                values["load_unit"] = LoadUnit(values["load_unit"])
            except ValueError:
                raise ValidationError(
                    f"invalid load unit: {values['load_unit']!r}", ["load_unit"]
                ) from None
        for name in ("exercise_name", "load_value", "reps", "effort", "timestamp", "set_number"):
            if name in values and _blank(values[name]):
                raise ValidationError(f"{name} cannot be empty", [name])
        try:
            return replace(self, **values)
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e), sorted(values)) from None


PATCHABLE_FIELDS = frozenset(f.name for f in fields(Entry)) - {"id"}


@dataclass
class Draft:
    """Form state for a set that has not been submitted yet."""

    modifiers: list[str] = field(default_factory=list)
    verbs: list[str] = field(default_factory=list)
    load_value: Optional[float] = None
    load_unit: LoadUnit = LoadUnit.WEIGHT
    reps: Optional[int] = None
    effort: Optional[float] = None
    rest_seconds: Optional[int] = None
    note: Optional[str] = None

    @property
    def exercise_name(self) -> str:
        return compose_exercise_name(self.modifiers, self.verbs)

    def missing_fields(self) -> list[str]:
        missing = []
        if not [v for v in self.verbs if v and v.strip()]:
            missing.append("verbs")
        if _blank(self.load_value):
            missing.append("load_value")
        if _blank(self.reps):
            missing.append("reps")
        if _blank(self.effort):
            missing.append("effort")
        return missing

    def validate(self, menu: Optional[Menu] = None) -> None:
        """Raise ``ValidationError`` unless the draft can become an entry."""
        missing = self.missing_fields()
        if missing:
            raise ValidationError(
                f"missing required fields: {', '.join(missing)}", missing
            )
        if menu is not None and not menu.is_empty:
            unknown = [m for m in self.modifiers if m not in menu.modifiers]
            unknown += [v for v in self.verbs if v not in menu.verbs]
            if unknown:
                raise ValidationError(
                    f"not on the menu: {', '.join(unknown)}", ["modifiers", "verbs"]
                )
        try:
            _finite(self.load_value, "load_value")
            _whole(self.reps, "reps")
            _finite(self.effort, "effort")
            if self.rest_seconds is not None:
                _whole(self.rest_seconds, "rest_seconds")
        except (TypeError, ValueError) as e:
            raise ValidationError(f"invalid number: {e}") from None

    def to_entry(self, entry_id: EntryId, timestamp: int, set_number: int) -> Entry:
        return Entry(
            id=entry_id,
            timestamp=timestamp,
            exercise_name=self.exercise_name,
            set_number=set_number,
            load_value=self.load_value,
            load_unit=self.load_unit,
            reps=self.reps,
            effort=self.effort,
            rest_seconds=self.rest_seconds,
            note=self.note,
        )

    def autofill_from(self, source: Entry) -> "Draft":
        """Copy load, reps, effort and rest of ``source`` keeping the tokens."""
        return replace(
            self,
            load_value=source.load_value,
            load_unit=source.load_unit,
            reps=source.reps,
            effort=source.effort,
            rest_seconds=source.rest_seconds,
        )

    def to_dict(self) -> dict:
        return {
            "modifiers": list(self.modifiers),
            "verbs": list(self.verbs),
            "load_value": self.load_value,
            "load_unit": self.load_unit.value,
            "reps": self.reps,
            "effort": self.effort,
            "rest_seconds": self.rest_seconds,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Draft":
        return cls(
            modifiers=list(data.get("modifiers") or []),
            verbs=list(data.get("verbs") or []),
            load_value=data.get("load_value"),
            load_unit=LoadUnit(data.get("load_unit") or LoadUnit.WEIGHT.value),
            reps=data.get("reps"),
            effort=data.get("effort"),
            rest_seconds=data.get("rest_seconds"),
            note=data.get("note"),
        )
