"""
Locator normalization.

Test authors write locators as plain strings; everything downstream works on
Locator values. The prefix rules are checked in a fixed order and the first
match wins.
"""

from __future__ import annotations

from typing import Any, Mapping, Union

from deskprobe.core.contracts import Locator, LocatorStrategy

LocatorLike = Union[str, Locator, Mapping[str, Any]]

# (prefix, strategy, strip prefix from value)
_PREFIX_RULES: tuple[tuple[str, LocatorStrategy, bool], ...] = (
    ("@", LocatorStrategy.REF, False),
    ("//", LocatorStrategy.XPATH, False),
    ("text=", LocatorStrategy.TEXT, True),
    ("role=", LocatorStrategy.ROLE, True),
    ("[data-testid=", LocatorStrategy.TESTID, False),
)


def is_ref(value: str) -> bool:
    return value.startswith("@")


def normalize_locator(locator: LocatorLike) -> Locator:
    """
    Normalize a locator string or mapping into a Locator.

    Args:
        locator: Raw string, mapping with strategy/value keys, or a Locator

    Returns:
        The normalized Locator. Already-normalized input is returned unchanged.
    """
    if isinstance(locator, Locator):
        return locator

    if isinstance(locator, Mapping):
        within = locator.get("within")
        return Locator(
            strategy=LocatorStrategy(locator["strategy"]),
            value=str(locator["value"]),
            nth=locator.get("nth"),
            within=normalize_locator(within) if within is not None else None,
        )

    if not isinstance(locator, str):
        raise TypeError(f"Unsupported locator type: {type(locator).__name__}")

    for prefix, strategy, strip in _PREFIX_RULES:
        if locator.startswith(prefix):
            value = locator[len(prefix):] if strip else locator
            return Locator(strategy=strategy, value=value)

    return Locator(strategy=LocatorStrategy.CSS, value=locator)


def visual(description: str) -> Locator:
    """Build a natural-language locator that only the visual tier can resolve."""
    return Locator(strategy=LocatorStrategy.VISUAL, value=description)


def locator_to_description(locator: Locator) -> str:
    """Render a locator as a natural-language description for the VLM."""
    if locator.strategy == LocatorStrategy.TEXT:
        return f'element with text "{locator.value}"'
    if locator.strategy == LocatorStrategy.ROLE:
        return f"{locator.value} element"
    if locator.strategy == LocatorStrategy.VISUAL:
        return locator.value
    return f"element matching {locator.value}"


def locator_to_selector(locator: Locator) -> str:
    """
    Translate a locator into a Playwright selector string.

    Args:
        locator: Normalized locator (ref and visual locators are not translatable)

    Returns:
        Playwright selector, chained with ``>>`` when ``within`` is set
    """
    strategy = locator.strategy
    if strategy == LocatorStrategy.VISUAL:
        raise ValueError("Visual locators have no structural selector")
    if strategy == LocatorStrategy.REF:
        raise ValueError("Refs resolve through the snapshot cache, not a selector")

    if strategy == LocatorStrategy.XPATH:
        selector = f"xpath={locator.value}"
    elif strategy == LocatorStrategy.TEXT:
        selector = f"text={locator.value}"
    elif strategy == LocatorStrategy.ROLE:
        selector = f"role={locator.value}"
    else:
        # css and testid are already valid CSS
        selector = locator.value

    if locator.within is not None:
        selector = f"{locator_to_selector(locator.within)} >> {selector}"
    return selector
