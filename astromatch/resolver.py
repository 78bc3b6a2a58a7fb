"""
Score resolution for a viewer against a batch of candidate profiles.

Per candidate: stored score, else freshly computed score, then normalize.
A candidate that fails at any step is left out of the result mapping;
one bad candidate never aborts the batch.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from .client import AstroMatchError, ApiClient, CancelToken, RequestCancelled
from .engine import ComputeService
from .logger import StructuredLogger, get_logger
from .models import CandidateProfile, CompatibilityResult
from .normalize import normalize, unwrap_stored_row
from .storage import CompatibilityStore

SCORE_PATH = "/api/compatibility/score"
SCORE_DEBOUNCE = 0.3  # seconds

Candidate = Union[CandidateProfile, str]


class ResolverError(AstroMatchError):
    """The candidate list itself could not be obtained."""
    pass


class CompatibilityCache:
    """
    Session-scoped results: candidate id -> CompatibilityResult.

    Only the resolver writes to it. Readers get immutable snapshots.
    """

    def __init__(self):
        self._results: Dict[str, CompatibilityResult] = {}

    def __contains__(self, candidate_id: str) -> bool:
        return candidate_id in self._results

    def __len__(self) -> int:
        return len(self._results)

    def get(self, candidate_id: str) -> Optional[CompatibilityResult]:
        return self._results.get(candidate_id)

    def put(self, candidate_id: str, result: CompatibilityResult) -> None:
        self._results[candidate_id] = result

    def clear(self) -> None:
        self._results.clear()

    def snapshot(self) -> Mapping[str, CompatibilityResult]:
        return MappingProxyType(dict(self._results))


def _candidate_id(candidate: Candidate) -> str:
    if isinstance(candidate, CandidateProfile):
        return candidate.id
    return str(candidate)


class ScoreResolver:
    """Resolve compatibility scores, preferring stored results over computing new ones."""

    def __init__(
        self,
        store: CompatibilityStore,
        compute: ComputeService,
        cache: Optional[CompatibilityCache] = None,
        max_workers: int = 1,
        logger: Optional[StructuredLogger] = None,
    ):
        self.store = store
        self.compute = compute
        self.cache = cache if cache is not None else CompatibilityCache()
        self.max_workers = max(1, max_workers)
        self.logger = logger or get_logger()

    def _stored_payload(self, viewer_id: str, candidate_id: str) -> Any:
        try:
            row = self.store.find(viewer_id, candidate_id)
            if row is None:
                return None
            payload = unwrap_stored_row(row)
            score = row.get("score")
        except Exception as e:
            self.logger.error(
                "Error fetching stored compatibility",
                viewer_id=viewer_id, candidate_id=candidate_id, error=str(e),
            )
            return None
        self.logger.info(
            "Using stored compatibility score",
            viewer_id=viewer_id, candidate_id=candidate_id, score=score,
        )
        self.logger.record_score_source("stored")
        return payload

    def _computed_payload(
        self, viewer_id: str, candidate_id: str, cancel_token: Optional[CancelToken] = None
    ) -> Any:
        self.logger.info("Computing compatibility", viewer_id=viewer_id, candidate_id=candidate_id)
        try:
            payload = self.compute.compute(viewer_id, candidate_id, cancel_token=cancel_token)
        except RequestCancelled:
            self.logger.info("Compatibility request cancelled", candidate_id=candidate_id)
            return None
        except Exception as e:
            self.logger.error(
                "Error computing compatibility",
                viewer_id=viewer_id, candidate_id=candidate_id,
                error_type=type(e).__name__, error=str(e),
            )
            self.logger.record_score_skipped("compute_error")
            return None
        if not payload:
            self.logger.warning(
                "Empty compatibility result from backend",
                viewer_id=viewer_id, candidate_id=candidate_id,
            )
            self.logger.record_score_skipped("empty_result")
            return None
        self.logger.record_score_source("computed")
        return payload

    def resolve_one(
        self, viewer_id: str, candidate_id: str, cancel_token: Optional[CancelToken] = None
    ) -> Optional[CompatibilityResult]:
        """
        Resolve one pair. Returns None when no valid score is available.

        Never raises: any failure is logged and the candidate is skipped.
        ``cancel_token`` is handed to the compute call so a cancelled batch
        stops retrying.
        """
        try:
            raw = self._stored_payload(viewer_id, candidate_id)
            if raw is None:
                raw = self._computed_payload(viewer_id, candidate_id, cancel_token)
                if raw is None:
                    return None

            result = normalize(raw)
        except Exception as e:
            self.logger.error(
                "Failed to load compatibility",
                candidate_id=candidate_id, error_type=type(e).__name__, error=str(e),
            )
            self.logger.record_score_skipped("unexpected_error")
            return None

        if result is None:
            self.logger.warning(
                "Dropping compatibility result due to missing or invalid Ashta Koota fields",
                viewer_id=viewer_id, candidate_id=candidate_id,
            )
            self.logger.record_score_skipped("rejected_payload")
            return None

        self.logger.info(
            "Using compatibility result",
            viewer_id=viewer_id, candidate_id=candidate_id,
            total_gunas=result.total_gunas, max_gunas=result.max_gunas, verdict=result.verdict,
        )
        self.logger.record_score_resolved()
        return result

    def _complete(self, candidate_id: str, result: Optional[CompatibilityResult]) -> None:
        if result is not None:
            self.cache.put(candidate_id, result)

    def resolve_all(
        self,
        viewer_id: str,
        candidates: Optional[Iterable[Candidate]],
        cancel_token: Optional[CancelToken] = None,
        refresh: bool = False,
    ) -> Mapping[str, CompatibilityResult]:
        """
        Resolve every candidate and return ``{candidate_id: result}``.

        Candidates without a valid score are absent from the mapping.
        Results already in the cache are reused unless ``refresh`` is set.
        Once ``cancel_token`` is cancelled, no further results are applied.

        Raises:
            ResolverError: the candidate list is unavailable
        """
        if candidates is None:
            raise ResolverError("Candidate list is unavailable")
        if refresh:
            self.cache.clear()

        ids = [_candidate_id(c) for c in candidates]
        pending = list(dict.fromkeys(cid for cid in ids if cid not in self.cache))

        def cancelled() -> bool:
            return cancel_token is not None and cancel_token.cancelled

        if self.max_workers == 1:
            for cid in pending:
                if cancelled():
                    break
                result = self.resolve_one(viewer_id, cid, cancel_token)
                if cancelled():
                    break
                self._complete(cid, result)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = {pool.submit(self.resolve_one, viewer_id, cid, cancel_token): cid for cid in pending}
                # Results are applied here only, on the calling thread.
                for future in as_completed(futures):
                    if cancelled():
                        for f in futures:
                            f.cancel()
                        break
                    self._complete(futures[future], future.result())

        if cancelled():
            self.logger.info("Compatibility resolution cancelled", viewer_id=viewer_id)

        return MappingProxyType(
            {cid: self.cache.get(cid) for cid in ids if cid in self.cache}
        )


def request_score(
    client: ApiClient,
    profile_id: Optional[str],
    cancel_token: Optional[CancelToken] = None,
    debounce: float = SCORE_DEBOUNCE,
    sleep: Optional[Callable[[float], None]] = None,
) -> Optional[CompatibilityResult]:
    """
    Fetch the viewer's score against one profile after a short debounce.

    Returns None when there is no profile, the request was cancelled, or
    the payload is rejected. Request errors propagate to the caller.
    """
    if not profile_id:
        return None
    token = cancel_token or CancelToken()

    if debounce > 0:
        if sleep is not None:
            sleep(debounce)
        else:
            token.wait(debounce)
    if token.cancelled:
        return None

    try:
        data = client.get(SCORE_PATH, params={"profileId": profile_id}, cancel_token=token)
    except RequestCancelled:
        return None
    return normalize(data)
