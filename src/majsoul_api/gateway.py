"""Request-shaped wrappers over authenticated calls."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from majsoul_api.codec import to_plain
from majsoul_api.records.resolver import RecordResolver
from majsoul_api.session.manager import SessionManager
from majsoul_api.utils.logger_util import get_logger

logger = get_logger(__name__)


class ContestGateway:
    def __init__(self, session: SessionManager):
        self.session = session

    async def fetch_customized_contest_by_contest_id(self, contest_id) -> Dict[str, Any]:
        await self.session.await_ready()
        contest = await self.session.call("fetchCustomizedContestByContestId", {"contest_id": contest_id})
        return to_plain(contest)

    async def fetch_customized_contest_game_records(self, unique_id, last_index=None) -> Dict[str, Any]:
        # the service treats a missing cursor and an empty one differently
        params: Dict[str, Any] = {"unique_id": unique_id}
        if last_index:
            params["last_index"] = last_index
        await self.session.await_ready()
        records = await self.session.call("fetchCustomizedContestGameRecords", params)
        return to_plain(records)


class RecordGateway:
    def __init__(self, session: SessionManager, resolver: RecordResolver, client_version: str):
        self.session = session
        self.resolver = resolver
        self.client_version = client_version

    async def fetch_game_record(self, game_uuid: str) -> List[Dict[str, Any]]:
        await self.session.await_ready()
        response = await self.session.call("fetchGameRecord", {
            "game_uuid": game_uuid,
            "client_version_string": self.client_version,
        })
        data: Optional[bytes] = response.get("data") if isinstance(response, dict) else response.data
        events = self.resolver.resolve(data or b"", self.client_version)
        logger.debug("record %s resolved to %d events", game_uuid, len(events))
        return [event.model_dump() for event in events]
