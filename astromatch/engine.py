"""Compute collaborators: obtain a fresh compatibility payload for a pair."""

from typing import Any, Callable, Dict, Optional, Protocol

import requests
from sqlalchemy.exc import SQLAlchemyError

from .client import ApiClient, CancelToken, ValidationError, fetch_with_retry
from .logger import get_logger
from .storage import CompatibilityStore

CALCULATE_FUNCTION_PATH = "/functions/v1/calculate-compatibility"

# Kundli names that the scoring engine spells differently.
NAKSHATRA_ALIASES = {
    "Mrigashirsha": "Mrigashira",
}

KundliLookup = Callable[[str], Optional[Dict[str, Any]]]


class ComputeService(Protocol):
    def compute(
        self, viewer_id: str, other_id: str, cancel_token: Optional[CancelToken] = None
    ) -> Any:
        ...


class RemoteComputeClient:
    """Invoke the hosted calculate-compatibility function."""

    def __init__(self, client: ApiClient, path: str = CALCULATE_FUNCTION_PATH):
        self.client = client
        self.path = path

    def compute(
        self, viewer_id: str, other_id: str, cancel_token: Optional[CancelToken] = None
    ) -> Any:
        return self.client.post(
            self.path,
            json={"user1Id": viewer_id, "user2Id": other_id},
            cancel_token=cancel_token,
        )


def normalise_nakshatra(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return NAKSHATRA_ALIASES.get(value, value)


def moon_details(kundli: Dict[str, Any]) -> Dict[str, Any]:
    """Moon sign and nakshatra, from either the flat or the nested ``moon`` layout."""
    moon = kundli.get("moon") if isinstance(kundli.get("moon"), dict) else {}
    return {
        "moon_sign": kundli.get("moon_sign") or moon.get("sign"),
        "nakshatra": normalise_nakshatra(kundli.get("nakshatra") or moon.get("nakshatra")),
    }


def build_engine_payload(bride_kundli: Dict[str, Any], groom_kundli: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "bride": moon_details(bride_kundli),
        "groom": moon_details(groom_kundli),
    }


class EngineComputeService:
    """
    Local stand-in for the calculate-compatibility function.

    Loads both kundlis, calls the scoring engine and persists successful
    results so the next lookup is served from storage.
    """

    def __init__(
        self,
        kundli_lookup: KundliLookup,
        store: CompatibilityStore,
        engine_url: str,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.kundli_lookup = kundli_lookup
        self.store = store
        self.engine_url = engine_url
        self.session = session
        self.sleep = sleep
        self.logger = get_logger()

    def compute(
        self, viewer_id: str, other_id: str, cancel_token: Optional[CancelToken] = None
    ) -> Any:
        if not viewer_id or not other_id:
            raise ValidationError("Missing user IDs")

        first = self.kundli_lookup(viewer_id)
        second = self.kundli_lookup(other_id)
        if not first or not second:
            self.logger.warning(
                "Kundli data not found for one or both users",
                user1_id=viewer_id,
                user2_id=other_id,
            )
            # Non-fatal: the normalizer drops this payload.
            return {"error": "Kundli data not found for one or both users", "missing_kundli": True}

        payload = build_engine_payload(first, second)
        self.logger.info("Calling compatibility engine", payload=payload)
        self.logger.record_api_call()
        result = fetch_with_retry(
            self.engine_url,
            {"method": "POST", "json": payload},
            session=self.session,
            cancel_token=cancel_token,
            sleep=self.sleep,
        )

        if isinstance(result, dict):
            score = result.get("total_gunas")
            try:
                self.store.insert(
                    viewer_id,
                    other_id,
                    score if isinstance(score, int) and not isinstance(score, bool) else None,
                    result,
                )
            except SQLAlchemyError as e:
                self.logger.error("Failed to store compatibility", error=str(e))
        return result
