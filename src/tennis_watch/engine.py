"""Navigation state machine driving one browser page through the reservation flow.

The site only serves the facility calendar inside a live session, and its
pages are postback driven, so the engine prefers direct URLs and falls back to
clicking through the menus when the server bounces it to an error page::

    INIT -> TOP -> (MODE_SELECT ->) CALENDAR -> DETAIL per marked cell -> DONE

Calendar marks that are not links are followed up through the shared
time-slot view instead, reached directly or through its calendar link.

Any state can move to ERROR. A page classified as a hard block ends the run at
once; everything else is retried within the configured budgets.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

import structlog

from .aggregate import aggregate
from .artifacts import ArtifactStore
from .browser import PageDriver
from .classifier import PageState, classify_page
from .config import EngineConfig, RetryBudget
from .errors import HardBlock, NavigationMismatch, RetryExhausted, ScanError
from .extractor import extract_slots
from .models import Facility, ScanResult, SlotRecord
from .navigation import INTERACTIVE_SELECTOR, NavigationTarget, click_candidate, find_best_candidate
from .regions import facility_presence, marked_element_indices, static_mark_count
from .retry import with_retries

LOGGER = structlog.get_logger(__name__)


class NavState(str, Enum):
    INIT = "INIT"
    TOP = "TOP"
    MODE_SELECT = "MODE_SELECT"
    CALENDAR = "CALENDAR"
    DETAIL = "DETAIL"
    DONE = "DONE"
    ERROR = "ERROR"


class AvailabilityEngine:
    """Owns the page for the whole run; nothing else may navigate it."""

    def __init__(
        self,
        driver: PageDriver,
        config: EngineConfig,
        artifacts: Optional[ArtifactStore] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._driver = driver
        self._config = config
        self._artifacts = artifacts
        self._sleep = sleep
        self.state = NavState.INIT
        self.history: list[NavState] = [NavState.INIT]
        self.diagnostics: dict[str, Path] = {}
        self.used_traversal = False

    async def run(self) -> ScanResult:
        """Reach the calendar, visit every marked cell and return the aggregated slots."""
        LOGGER.info(
            "engine.start",
            entry_url=self._config.entry_url,
            calendar_url=self._config.calendar_url,
            facilities=[facility.key for facility in self._config.facilities],
        )
        try:
            await self._open_top()
            if self._config.extra_delay_ms > 0:
                LOGGER.info("engine.extra_delay", milliseconds=self._config.extra_delay_ms)
                await self._sleep(self._config.extra_delay_ms / 1000)
            await self._reach_calendar()
            await self._checkpoint("01_calendar")
            per_facility, skipped = await self._scan_facilities()
        except Exception as exc:
            await self._fail(exc)
            raise

        self._enter(NavState.DONE)
        result = aggregate(
            per_facility,
            reached_url=self._driver.url,
            diagnostics=self.diagnostics,
            skipped=skipped,
        )
        LOGGER.info(
            "engine.done",
            slots=len(result.slots),
            scanned=list(result.facilities_scanned),
            skipped=list(result.facilities_skipped),
        )
        return result

    # -- state bookkeeping -------------------------------------------------

    def _enter(self, state: NavState) -> None:
        if state is not self.state:
            LOGGER.info("engine.transition", source=self.state.value, target=state.value)
        self.state = state
        self.history.append(state)

    async def _checkpoint(self, label: str) -> None:
        if self._artifacts is None:
            return
        self.diagnostics.update(await self._artifacts.capture(self._driver, label))

    async def _fail(self, exc: BaseException) -> None:
        failed_in = self.state
        self._enter(NavState.ERROR)
        await self._checkpoint("99_error")
        url = self._driver.url
        if isinstance(exc, ScanError):
            exc.url = exc.url or url
            exc.diagnostics.update(self.diagnostics)
        LOGGER.error("engine.failed", state=failed_in.value, url=url, error=f"{type(exc).__name__}: {exc}")

    async def _retry(self, name: str, operation, budget: RetryBudget):
        return await with_retries(
            name,
            operation,
            tries=budget.tries,
            base_delay=budget.base_delay,
            sleep=self._sleep,
        )

    # -- page checks -------------------------------------------------------

    async def _classify(self, step: str, http_status: Optional[int]) -> PageState:
        text = await self._driver.text()
        url = self._driver.url
        state = classify_page(text, http_status, url, self._config.routes, self._config.classifier_rules)
        LOGGER.info("engine.page", step=step, state=state.value, status=http_status, url=url)
        if state is PageState.HARD_BLOCK:
            raise HardBlock(step, url=url, http_status=http_status)
        return state

    async def _require_valid(self, step: str, http_status: Optional[int]) -> None:
        state = await self._classify(step, http_status)
        if state is not PageState.VALID:
            raise NavigationMismatch(step, f"page classified as {state.value}", url=self._driver.url)

    async def _require_calendar(self, step: str, http_status: Optional[int]) -> None:
        await self._require_valid(step, http_status)
        if not self._config.routes.is_calendar(self._driver.url):
            raise NavigationMismatch(step, "not on the calendar route", url=self._driver.url)

    async def _require_detail(self, step: str, http_status: Optional[int]) -> None:
        await self._require_valid(step, http_status)
        if not self._config.routes.is_detail(self._driver.url):
            raise NavigationMismatch(step, "not on the detail route", url=self._driver.url)

    async def _settle(self) -> None:
        await self._driver.wait(self._config.settle_ms)

    # -- INIT -> TOP -------------------------------------------------------

    async def _load_top(self, attempt: int) -> None:
        LOGGER.info("engine.top.goto", attempt=attempt, url=self._config.entry_url)
        outcome = await self._driver.goto(self._config.entry_url)
        await self._settle()
        await self._require_valid("TOP", outcome.status)

    async def _open_top(self) -> None:
        await self._retry("TOP", self._load_top, self._config.top_retry)
        self._enter(NavState.TOP)
        await self._checkpoint("00_top")

    # -- TOP -> CALENDAR ---------------------------------------------------

    async def _calendar_direct(self, attempt: int) -> None:
        LOGGER.info("engine.calendar.goto", attempt=attempt, url=self._config.calendar_url)
        outcome = await self._driver.goto(self._config.calendar_url)
        await self._settle()
        await self._require_calendar("CALENDAR(direct)", outcome.status)

    async def _click_target(self, targets: Sequence[NavigationTarget], step: str) -> NavigationTarget:
        """Click the best element for the first target, in order, that has one."""
        html = await self._driver.content()
        for target in targets:
            candidate = find_best_candidate(html, self._driver.url, target)
            if candidate is not None:
                break
        else:
            labels = ", ".join(repr(option.label) for option in targets)
            raise NavigationMismatch(step, f"no element matches {labels}", url=self._driver.url)
        await click_candidate(self._driver, candidate)
        await self._settle()
        await self._require_valid(step, None)
        return target

    async def _calendar_by_clicks(self, attempt: int) -> None:
        self.used_traversal = True
        LOGGER.info("engine.calendar.traversal", attempt=attempt)
        await self._load_top(attempt)
        self._enter(NavState.TOP)
        # Some layouts list the tennis category on the top page itself.
        clicked = await self._click_target(
            (self._config.facility_type_target, self._config.tennis_target),
            "MODE_SELECT",
        )
        if clicked is self._config.facility_type_target:
            self._enter(NavState.MODE_SELECT)
        if not self._config.routes.is_calendar(self._driver.url):
            await self._click_target((self._config.tennis_target,), "CALENDAR(traversal)")
        await self._require_calendar("CALENDAR(traversal)", None)

    async def _reach_calendar(self) -> None:
        try:
            await self._retry("CALENDAR(direct)", self._calendar_direct, self._config.calendar_retry)
        except RetryExhausted as exc:
            direct_error = exc
            LOGGER.warning("engine.calendar.direct_failed", error=str(exc))
        else:
            self._enter(NavState.CALENDAR)
            return

        try:
            await self._retry("CALENDAR(traversal)", self._calendar_by_clicks, self._config.traversal_retry)
        except RetryExhausted as exc:
            raise NavigationMismatch(
                "CALENDAR",
                f"direct and click-through navigation both failed ({direct_error}; {exc})",
                url=self._driver.url,
            ) from exc
        self._enter(NavState.CALENDAR)

    # -- CALENDAR -> DETAIL -> CALENDAR ------------------------------------

    async def _return_to_calendar(self) -> None:
        try:
            outcome = await self._driver.go_back()
            await self._settle()
            state = await self._classify("CALENDAR(back)", outcome.status)
            if state is PageState.VALID and self._config.routes.is_calendar(self._driver.url):
                self._enter(NavState.CALENDAR)
                return
            LOGGER.info("engine.back.not_calendar", state=state.value, url=self._driver.url)
        except HardBlock:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("engine.back.failed", error=f"{type(exc).__name__}: {exc}")
        await self._reach_calendar()

    def _marks(self, html: str, facility: Facility) -> list[int]:
        return marked_element_indices(
            html,
            facility,
            self._config.facilities,
            self._config.calendar_markers,
        )

    async def _visit_mark(self, facility: Facility, ordinal: int) -> list[SlotRecord]:
        position = self._config.facilities.index(facility) + 1

        async def attempt(number: int) -> list[SlotRecord]:
            if self.state is not NavState.CALENDAR or not self._config.routes.is_calendar(self._driver.url):
                await self._reach_calendar()
            marks = self._marks(await self._driver.content(), facility)
            if ordinal >= len(marks):
                LOGGER.info("engine.detail.mark_gone", facility=facility.key, ordinal=ordinal)
                return []
            LOGGER.info("engine.detail.click", facility=facility.key, ordinal=ordinal, attempt=number)
            await self._driver.click_nth(INTERACTIVE_SELECTOR, marks[ordinal])
            await self._settle()
            self._enter(NavState.DETAIL)
            await self._require_detail("DETAIL", None)
            await self._checkpoint(f"02_detail_{position}_{ordinal + 1}")

            slots = extract_slots(
                await self._driver.content(),
                facility,
                self._config.facilities,
                markers=self._config.available_markers,
            )
            LOGGER.info("engine.detail.extracted", facility=facility.key, ordinal=ordinal, slots=len(slots))
            await self._return_to_calendar()
            return slots

        return await self._retry(f"DETAIL({facility.key}#{ordinal + 1})", attempt, self._config.detail_retry)

    async def _open_detail_view(self, attempt: int) -> None:
        LOGGER.info("engine.detail.goto", attempt=attempt, url=self._config.detail_url)
        outcome = await self._driver.goto(self._config.detail_url)
        await self._settle()
        try:
            await self._require_detail("DETAIL(direct)", outcome.status)
            return
        except NavigationMismatch as exc:
            LOGGER.info("engine.detail.direct_failed", error=str(exc))

        if not self._config.routes.is_calendar(self._driver.url):
            await self._reach_calendar()
        await self._click_target((self._config.detail_target,), "DETAIL(link)")
        await self._require_detail("DETAIL(link)", None)

    async def _visit_detail_view(self, facility: Facility) -> list[SlotRecord]:
        """Read ``facility``'s slots from the shared time-slot view."""
        position = self._config.facilities.index(facility) + 1

        async def attempt(number: int) -> list[SlotRecord]:
            await self._open_detail_view(number)
            self._enter(NavState.DETAIL)
            await self._checkpoint(f"02_detail_{position}_view")
            slots = extract_slots(
                await self._driver.content(),
                facility,
                self._config.facilities,
                markers=self._config.available_markers,
                require_owner=True,
            )
            LOGGER.info("engine.detail.extracted", facility=facility.key, view=True, slots=len(slots))
            await self._return_to_calendar()
            return slots

        return await self._retry(f"DETAIL({facility.key} view)", attempt, self._config.detail_view_retry)

    async def _scan_facilities(self) -> tuple[dict[str, list[SlotRecord]], list[str]]:
        calendar_text = await self._driver.text()
        LOGGER.info("engine.calendar.presence", presence=facility_presence(calendar_text, self._config.facilities))

        per_facility: dict[str, list[SlotRecord]] = {}
        skipped: list[str] = []
        limit = self._config.max_marks_per_facility
        for facility in self._config.facilities:
            html = await self._driver.content()
            marks = self._marks(html, facility)
            if not marks and static_mark_count(
                html, facility, self._config.facilities, self._config.calendar_markers
            ):
                LOGGER.info("engine.facility.static_marks", facility=facility.key)
                per_facility[facility.key] = await self._visit_detail_view(facility)
                continue
            if not marks:
                LOGGER.info("engine.facility.skipped", facility=facility.key, reason="no marked region")
                skipped.append(facility.key)
                continue
            if len(marks) > limit:
                LOGGER.info("engine.facility.truncated", facility=facility.key, marks=len(marks), limit=limit)
            slots: list[SlotRecord] = []
            for ordinal in range(min(len(marks), limit)):
                slots.extend(await self._visit_mark(facility, ordinal))
            per_facility[facility.key] = slots
        return per_facility, skipped
