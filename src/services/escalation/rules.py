"""Escalation rule table.

Each severity owns a chain of levels.  Level *n* waits ``delay`` ms and
then moves to level *n + 1*; the last level waits and then closes the
complaint.  The default chains are:

    low     1 -24h-> 2 -24h-> 3 -24h-> close
    medium  1 -12h-> 2 -24h-> 3 -36h-> 4 -48h-> close
    high    1 -2h->  2 -12h-> 3 -20h-> 4 -24h-> 5 -30h-> close

``DEFAULT_ESCALATION_RULES`` is plain, JSON-serialisable data so the
same table can be shipped to display clients.  :class:`RuleTable` is
the validated, read-only form the engine receives at construction.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final

import orjson
import structlog

from src.models.enums import Severity
from src.models.escalation import CLOSE, CloseLevel, EscalationRule, NumericLevel
from src.services.escalation.errors import ConfigurationError

logger = structlog.get_logger(__name__)

_HOUR_MS: Final[int] = 3_600_000

DEFAULT_SEVERITY: Final[Severity] = Severity.MEDIUM
DEFAULT_LEVEL: Final[int] = 1

DEFAULT_ESCALATION_RULES: Final[dict[str, dict[int, dict[str, Any]]]] = {
    "low": {
        1: {"next": 2, "delay": 24 * _HOUR_MS},
        2: {"next": 3, "delay": 24 * _HOUR_MS},
        3: {"next": CLOSE, "delay": 24 * _HOUR_MS},
    },
    "medium": {
        1: {"next": 2, "delay": 12 * _HOUR_MS},
        2: {"next": 3, "delay": 24 * _HOUR_MS},
        3: {"next": 4, "delay": 36 * _HOUR_MS},
        4: {"next": CLOSE, "delay": 48 * _HOUR_MS},
    },
    "high": {
        1: {"next": 2, "delay": 2 * _HOUR_MS},
        2: {"next": 3, "delay": 12 * _HOUR_MS},
        3: {"next": 4, "delay": 20 * _HOUR_MS},
        4: {"next": 5, "delay": 24 * _HOUR_MS},
        5: {"next": CLOSE, "delay": 30 * _HOUR_MS},
    },
}


# ---------------------------------------------------------------------------
# Input fallbacks
# ---------------------------------------------------------------------------


def resolve_severity(value: object, *, complaint_id: str | None = None) -> Severity:
    """Map a stored severity onto :class:`Severity`, falling back to medium.

    The fallback is logged because it usually means the complaint was
    created without a severity upstream.
    """
    if isinstance(value, str):
        try:
            return Severity(value.strip().lower())
        except ValueError:
            pass
    logger.warning(
        "escalation.severity_fallback",
        complaint_id=complaint_id,
        severity=value,
        fallback=DEFAULT_SEVERITY.value,
    )
    return DEFAULT_SEVERITY


def normalize_level(value: object, *, complaint_id: str | None = None) -> int:
    """Return *value* as a level >= 1; anything else becomes level 1."""
    if isinstance(value, int) and not isinstance(value, bool) and value >= 1:
        return value
    logger.warning(
        "escalation.level_fallback",
        complaint_id=complaint_id,
        level=value,
        fallback=DEFAULT_LEVEL,
    )
    return DEFAULT_LEVEL


# ---------------------------------------------------------------------------
# RuleTable
# ---------------------------------------------------------------------------


def _parse_level_key(severity: str, key: object) -> int:
    if isinstance(key, bool):
        raise ConfigurationError(f"{severity}: level key {key!r} is not an integer")
    if isinstance(key, int):
        return key
    if isinstance(key, str) and key.strip().isdigit():
        return int(key)
    raise ConfigurationError(f"{severity}: level key {key!r} is not an integer")


def _build_chain(severity: Severity, raw: Mapping[Any, Any]) -> tuple[EscalationRule, ...]:
    if not isinstance(raw, Mapping) or not raw:
        raise ConfigurationError(f"{severity}: chain is empty")

    entries = {_parse_level_key(severity, key): value for key, value in raw.items()}
    levels = sorted(entries)
    if levels != list(range(1, len(levels) + 1)):
        raise ConfigurationError(f"{severity}: levels must be contiguous from 1, got {levels}")

    last = levels[-1]
    chain: list[EscalationRule] = []
    for level in levels:
        entry = entries[level]
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"{severity}/{level}: rule must be a mapping")

        delay = entry.get("delay")
        if isinstance(delay, bool) or not isinstance(delay, int) or delay <= 0:
            raise ConfigurationError(f"{severity}/{level}: delay must be a positive integer, got {delay!r}")

        target = entry.get("next")
        if target == CLOSE:
            if level != last:
                raise ConfigurationError(f"{severity}/{level}: 'close' before the last level {last}")
            next_level: NumericLevel | CloseLevel = CloseLevel()
        elif isinstance(target, int) and not isinstance(target, bool):
            if level == last:
                raise ConfigurationError(f"{severity}/{level}: last level must point to 'close'")
            if target != level + 1:
                raise ConfigurationError(f"{severity}/{level}: next must be {level + 1}, got {target}")
            next_level = NumericLevel(level=target)
        else:
            raise ConfigurationError(f"{severity}/{level}: next must be an integer or 'close', got {target!r}")

        chain.append(
            EscalationRule(severity=severity.value, level=level, next_level=next_level, delay_ms=delay)
        )
    return tuple(chain)


class RuleTable:
    """Validated, immutable escalation rule table.

    Construct with :meth:`from_mapping` (or :meth:`default`); the
    constructor itself trusts its input.
    """

    __slots__ = ("_chains",)

    def __init__(self, chains: Mapping[Severity, tuple[EscalationRule, ...]]) -> None:
        self._chains: Mapping[Severity, tuple[EscalationRule, ...]] = MappingProxyType(dict(chains))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RuleTable:
        """Validate a ``{severity: {level: {"next", "delay"}}}`` mapping.

        Raises
        ------
        ConfigurationError
            On unknown or missing severities, level gaps, non-positive
            delays, or a chain that does not end in ``close``.
        """
        if not isinstance(raw, Mapping):
            raise ConfigurationError("rule table must be a mapping of severities")

        unknown = set(raw) - {s.value for s in Severity}
        if unknown:
            raise ConfigurationError(f"unknown severities in rule table: {sorted(unknown)}")

        chains: dict[Severity, tuple[EscalationRule, ...]] = {}
        for severity in Severity:
            if severity.value not in raw:
                raise ConfigurationError(f"rule table has no chain for severity '{severity}'")
            chains[severity] = _build_chain(severity, raw[severity.value])

        logger.debug(
            "escalation.rules_loaded",
            levels={s.value: len(c) for s, c in chains.items()},
        )
        return cls(chains)

    @classmethod
    def default(cls) -> RuleTable:
        return cls.from_mapping(DEFAULT_ESCALATION_RULES)

    # -- lookup ---------------------------------------------------------------

    def get_rule(self, severity: Severity | str, level: int) -> EscalationRule | None:
        """Return the rule for *(severity, level)* or ``None``.

        ``None`` means there is nothing scheduled: the level is past the
        terminal one or the severity is not a known variant.
        """
        try:
            chain = self._chains[Severity(severity)]
        except ValueError:
            return None
        if isinstance(level, bool) or not isinstance(level, int) or not 1 <= level <= len(chain):
            return None
        return chain[level - 1]

    def max_level(self, severity: Severity | str) -> int:
        return len(self._chains[Severity(severity)])

    def chain(self, severity: Severity | str) -> tuple[EscalationRule, ...]:
        return self._chains[Severity(severity)]

    @property
    def terminal_levels(self) -> dict[Severity, int]:
        return {severity: len(chain) for severity, chain in self._chains.items()}

    def to_mapping(self) -> dict[str, dict[int, dict[str, Any]]]:
        """Serialisable form, same shape as :data:`DEFAULT_ESCALATION_RULES`."""
        return {
            severity.value: {
                rule.level: {"next": rule.target, "delay": rule.delay_ms} for rule in chain
            }
            for severity, chain in self._chains.items()
        }


def load_rule_table(path: str | Path | None = None) -> RuleTable:
    """Load the rule table from a JSON file, or the default when *path* is empty."""
    if not path:
        return RuleTable.default()

    try:
        raw = orjson.loads(Path(path).read_bytes())
    except (OSError, orjson.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot read escalation rules from {path}: {exc}") from exc

    logger.info("escalation.rules_file", path=str(path))
    return RuleTable.from_mapping(raw)
