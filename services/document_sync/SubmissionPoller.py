"""Polls registry submissions until they leave the "in progress" state.

A submission ends as terminal-success (overall status "Valid"), terminal-other-status
(any other status), or timeout once the attempt budget is spent. A timeout is a
reported outcome, not an error.
"""

import asyncio
from typing import Awaitable, Callable, Iterable

from services.document_sync.BatchWriter import BatchWriter
from shared.clients.registry.RegistryClientInterface import RegistryClientInterface
from shared.errors import (
    InvalidSyncInputError,
    RegistryAuthError,
    RegistryError,
    RegistryRateLimitError,
)
from shared.helper.HelperConfig import HelperConfig
from shared.models.submission import (
    PollOutcome,
    SubmissionPollResult,
    SubmissionPollState,
    SubmissionStatus,
)

SUCCESS_STATUS = "valid"
DEFAULT_RETRY_AFTER = 30.0


class SubmissionPoller:
    def __init__(
        self,
        helper_config: HelperConfig,
        registry_client: RegistryClientInterface,
        writer: BatchWriter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._client = registry_client
        self._writer = writer
        self._sleep = sleep

        self.poll_interval = helper_config.get_number_val("POLL_INTERVAL", default=5)
        self.error_wait = helper_config.get_number_val("POLL_ERROR_WAIT", default=5)
        self.max_attempts = int(helper_config.get_number_val("POLL_MAX_ATTEMPTS", default=10))
        self.background_max_attempts = int(helper_config.get_number_val("POLL_BACKGROUND_MAX_ATTEMPTS", default=5))
        self.submission_gap = helper_config.get_number_val("POLL_SUBMISSION_GAP", default=1)

    ##########################################
    ################ POLLING #################
    ##########################################

    async def poll_submission(self, submission_uid: str, max_attempts: int | None = None) -> SubmissionPollResult:
        """Poll one submission until it is terminal or the attempt budget is spent.

        Args:
            submission_uid (str): The registry's submission id.
            max_attempts (int | None): Attempt budget, defaults to POLL_MAX_ATTEMPTS.

        Returns:
            SubmissionPollResult: The outcome with status, document count and documents.

        Raises:
            InvalidSyncInputError: If the uid is empty or max_attempts is smaller than 1.
            RegistryAuthError: If the registry keeps rejecting credentials after one refresh.
        """
        if not submission_uid or not submission_uid.strip():
            raise InvalidSyncInputError("submission_uid must not be empty")
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise InvalidSyncInputError(f"max_attempts must be at least 1, got {max_attempts}")

        state = SubmissionPollState(submission_uid=submission_uid.strip(), max_attempts=max_attempts)
        auth_refreshed = False

        while not state.exhausted:
            try:
                status = await self._client.do_fetch_submission(state.submission_uid)
            except RegistryAuthError:
                if auth_refreshed:
                    raise
                auth_refreshed = True
                self.logging.warning("Token rejected while polling submission %s, refreshing once.", state.submission_uid)
                await self._client.token_provider.refresh()
                continue
            except RegistryError as e:
                state.error_waits += 1
                wait = self._error_wait(e)
                self.logging.warning(
                    "Polling submission %s failed (%d/%d error waits), waiting %.1fs: %s",
                    state.submission_uid, state.error_waits, state.max_attempts, wait, e,
                )
                await self._sleep(wait)
                continue

            if status.is_terminal:
                return await self._finish_terminal(state, status)

            state.attempts_used += 1
            self.logging.info(
                "Submission %s still in progress (attempt %d/%d).",
                state.submission_uid, state.attempts_used, state.max_attempts,
            )
            if not state.exhausted:
                await self._sleep(self.poll_interval)

        state.outcome = PollOutcome.TIMEOUT
        self.logging.warning(
            "Submission %s did not finish after %d attempts; reporting timeout.",
            state.submission_uid, state.attempts_used,
        )
        return SubmissionPollResult(
            submission_uid=state.submission_uid,
            outcome=PollOutcome.TIMEOUT,
            status="timeout",
            attempts_used=state.attempts_used,
        )

    async def poll_many(self, submission_uids: Iterable[str], max_attempts: int | None = None) -> list[SubmissionPollResult]:
        """Poll several submissions one after another with a short gap in between.

        A submission that fails is logged and skipped; the others are still polled.
        """
        uids = list(dict.fromkeys(uid for uid in submission_uids if uid))
        results: list[SubmissionPollResult] = []
        for index, uid in enumerate(uids):
            if index:
                await self._sleep(self.submission_gap)
            try:
                results.append(await self.poll_submission(uid, max_attempts=max_attempts))
            except RegistryError as e:
                self.logging.error("Giving up on submission %s: %s", uid, e)
        return results

    ##########################################
    ################ HELPERS #################
    ##########################################

    def _error_wait(self, error: RegistryError) -> float:
        if isinstance(error, RegistryRateLimitError):
            retry_after = error.rate_limit.retry_after
            return retry_after if retry_after else DEFAULT_RETRY_AFTER
        return self.error_wait

    async def _finish_terminal(self, state: SubmissionPollState, status: SubmissionStatus) -> SubmissionPollResult:
        state.overall_status = status.overall_status
        state.documents = status.documents
        state.outcome = (
            PollOutcome.TERMINAL_SUCCESS
            if status.overall_status.strip().lower() == SUCCESS_STATUS
            else PollOutcome.TERMINAL_OTHER_STATUS
        )
        self.logging.info(
            "Submission %s finished with status %s (%d documents).",
            state.submission_uid, status.overall_status, len(status.documents),
        )

        if status.documents:
            write = await self._writer.save(self._with_submission_uid(status))
            if write.error_count:
                self.logging.warning(
                    "%d of %d documents of submission %s could not be saved.",
                    write.error_count, len(status.documents), state.submission_uid,
                )

        return SubmissionPollResult(
            submission_uid=state.submission_uid,
            outcome=state.outcome,
            status=status.overall_status,
            documentCount=status.document_count,
            documents=status.documents,
            attempts_used=state.attempts_used,
        )

    def _with_submission_uid(self, status: SubmissionStatus) -> list[dict]:
        # summaries may omit the uid of the submission they belong to
        return [
            {**doc, "submissionUid": doc.get("submissionUid") or status.submission_uid}
            for doc in status.documents
            if isinstance(doc, dict) and doc.get("uuid")
        ]
