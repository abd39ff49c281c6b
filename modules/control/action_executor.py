"""
Label → action router.

Maps a recognized gesture label to a deep link and opens it through a
pluggable opener. Each rule holds an ordered list of strategies (native
app scheme first, web fallback after); the first strategy that opens
wins, and every dispatch produces a uniform ActionOutcome.

Backends:
    - LoggingOpener: logs the URL only (headless / simulated)
    - SystemOpener: ``xdg-open`` / ``open`` via subprocess when available
"""

import os
import shutil
import subprocess
import threading
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import yaml

from core.types import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Rules
# =============================================================================

@dataclass(frozen=True)
class ActionStrategy:
    """One way to launch a target.

    ``require_can_open`` strategies are skipped when the opener reports the
    URL as unsupported; others are attempted unconditionally.
    """
    name: str
    url: str
    require_can_open: bool = True


@dataclass(frozen=True)
class ActionRule:
    name: str
    strategies: Tuple[ActionStrategy, ...]
    contains: Tuple[str, ...] = ()
    equals: Tuple[str, ...] = ()

    def matches(self, label: str) -> bool:
        normalized = label.lower()
        if normalized in self.equals:
            return True
        return any(token in normalized for token in self.contains)

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "ActionRule":
        if not isinstance(data, dict):
            raise ValidationError("Action rule '%s' must be a mapping" % name)
        match = data.get("match", {}) or {}
        contains = tuple(str(t).lower() for t in match.get("contains", []) or [])
        equals = tuple(str(t).lower() for t in match.get("equals", []) or [])
        if not contains and not equals:
            raise ValidationError("Action rule '%s' has no match terms" % name)
        strategies = []
        for i, item in enumerate(data.get("strategies", []) or []):
            if not isinstance(item, dict) or not item.get("url"):
                raise ValidationError("Action rule '%s' strategy %d needs a url" % (name, i))
            strategies.append(ActionStrategy(
                name=str(item.get("name", "strategy-%d" % i)),
                url=str(item["url"]),
                require_can_open=bool(item.get("require_can_open", True)),
            ))
        if not strategies:
            raise ValidationError("Action rule '%s' has no strategies" % name)
        return cls(name=name, strategies=tuple(strategies), contains=contains, equals=equals)


@dataclass(frozen=True)
class ActionOutcome:
    """Result of routing one label, whether or not anything opened."""
    label: str
    rule: Optional[str] = None
    strategy: Optional[str] = None
    url: Optional[str] = None
    opened: bool = False
    reason: str = ""
    timestamp: float = field(default_factory=time.time)


def load_rules(path: str) -> List[ActionRule]:
    """Load ordered rules from an actions YAML file (``rules:`` mapping)."""
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    rules_data = data.get("rules", {}) or {}
    if not isinstance(rules_data, dict):
        raise ValidationError("actions file must contain a 'rules' mapping")
    rules = [ActionRule.from_dict(name, body) for name, body in rules_data.items()]
    logger.info("Loaded %d action rules from %s", len(rules), path)
    return rules


# =============================================================================
# Openers
# =============================================================================

class LoggingOpener:
    """Opener that only logs. Every URL is reported as openable."""

    def __init__(self):
        self.opened = []

    def can_open(self, url: str) -> bool:
        return True

    def open(self, url: str):
        self.opened.append(url)
        logger.info("[SIMULATED] Open URL: %s", url)


class SystemOpener:
    """Opens URLs with the desktop handler (``xdg-open`` or ``open``).

    Only http(s) and mailto URLs are considered openable; app schemes are
    left for the fallback strategies.
    """

    _SUPPORTED_SCHEMES = ("http://", "https://", "mailto:")

    def __init__(self, timeout: float = 5.0):
        self._timeout = timeout
        self._command = shutil.which("xdg-open") or shutil.which("open")
        if self._command is None:
            logger.warning("No URL handler found - actions will be simulated (logged only)")

    @property
    def available(self) -> bool:
        return self._command is not None

    def can_open(self, url: str) -> bool:
        return url.startswith(self._SUPPORTED_SCHEMES)

    def open(self, url: str):
        if self._command is None:
            logger.info("[SIMULATED] Open URL: %s", url)
            return
        subprocess.run(
            [self._command, url],
            stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
            timeout=self._timeout, check=True,
        )
        logger.debug("Opened %s via %s", url, os.path.basename(self._command))


# =============================================================================
# Router
# =============================================================================

class LabelActionRouter:
    """Routes labels to the first matching rule and tries its strategies."""

    def __init__(self, rules: Sequence[ActionRule], opener=None):
        self._rules = list(rules)
        self._opener = opener or LoggingOpener()

        self._action_callbacks = []
        self._last_outcome = None
        self._action_count = 0
        self._lock = threading.Lock()

        logger.info("LabelActionRouter initialized (%d rules, opener=%s)",
                    len(self._rules), type(self._opener).__name__)

    @classmethod
    def from_yaml(cls, path: str, opener=None) -> "LabelActionRouter":
        return cls(load_rules(path), opener=opener)

    def find_rule(self, label: str) -> Optional[ActionRule]:
        for rule in self._rules:
            if rule.matches(label):
                return rule
        return None

    def route(self, label: str) -> ActionOutcome:
        """Resolve and open the action for ``label`` on the calling thread."""
        rule = self.find_rule(label)
        if rule is None:
            outcome = ActionOutcome(label=label, reason='No action mapped for "%s".' % label)
            self._record(outcome)
            return outcome

        reason = "no strategy could open"
        for strategy in rule.strategies:
            if strategy.require_can_open and not self._opener.can_open(strategy.url):
                logger.debug("Strategy %s/%s cannot open %s", rule.name, strategy.name, strategy.url)
                continue
            try:
                self._opener.open(strategy.url)
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning("Open failed for %s (%s): %s", strategy.url, strategy.name, e)
                reason = "open failed: %s" % e
                continue
            outcome = ActionOutcome(label=label, rule=rule.name, strategy=strategy.name,
                                    url=strategy.url, opened=True, reason="opened")
            self._record(outcome)
            return outcome

        outcome = ActionOutcome(label=label, rule=rule.name, reason=reason)
        self._record(outcome)
        return outcome

    def dispatch(self, label: str, async_exec: bool = True) -> Optional[ActionOutcome]:
        """Route ``label``, optionally on a background daemon thread.

        Returns:
            The outcome when run synchronously, None when dispatched async
            (callbacks registered with ``on_action`` receive it).
        """
        if async_exec:
            thread = threading.Thread(target=self.route, args=(label,), daemon=True)
            thread.start()
            return None
        return self.route(label)

    def _record(self, outcome: ActionOutcome):
        with self._lock:
            self._last_outcome = outcome
            self._action_count += 1
            callbacks = list(self._action_callbacks)

        if outcome.opened:
            logger.info("Action for '%s': %s -> %s", outcome.label, outcome.strategy, outcome.url)
        else:
            logger.info("No action for '%s': %s", outcome.label, outcome.reason)

        for callback in callbacks:
            try:
                callback(outcome)
            except Exception as e:
                logger.error("Action callback error: %s", e)

    def on_action(self, callback: Callable[[ActionOutcome], None]):
        """Register callback for routed outcomes.

        callback(outcome: ActionOutcome)
        """
        self._action_callbacks.append(callback)

    @property
    def rules(self) -> List[ActionRule]:
        return list(self._rules)

    @property
    def last_outcome(self) -> Optional[ActionOutcome]:
        return self._last_outcome

    @property
    def action_count(self) -> int:
        return self._action_count
