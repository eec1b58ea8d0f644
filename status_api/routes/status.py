from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify

from satlotto.errors import ChainOracleError
from satlotto.schemas import RoundStatusResponse, WinnerResponse, validate_round_id
from satlotto.types import RoundState

bp = Blueprint("status", __name__)


async def _collect_status(store, chain, round_id: int) -> Optional[Dict[str, Any]]:
    snapshot = await store.get_round(round_id)
    if snapshot is None:
        return None
    count = await store.count_participants(round_id)

    current_block: Optional[int] = None
    try:
        current_block = await chain.get_block_count()
    except ChainOracleError as exc:
        current_app.logger.warning("Unable to query current block height: %s", exc)

    result = None
    if snapshot.state is RoundState.DONE:
        record = await store.get_winner(round_id)
        if record is not None:
            result = WinnerResponse(
                winner=record.winner, prize=record.prize, fee=record.fee, blockHash=record.block_hash
            )

    return RoundStatusResponse(
        round=round_id,
        state=snapshot.state.value,
        participantCount=count,
        currentBlock=current_block,
        futureBlock=snapshot.future_block,
        seedHash=snapshot.seed_hash,
        merkleRoot=snapshot.merkle_root,
        result=result,
    ).dict()


@bp.get("/round/<round_id>/status")
def round_status(round_id: str):
    ext = current_app.extensions["satlotto"]
    metrics = ext["metrics"]
    with metrics.response_timer():
        rid = validate_round_id(round_id)
        payload = asyncio.run(_collect_status(ext["store"], ext["chain"], rid))
        if payload is None:
            return jsonify({"error": f"round {rid} not found"}), 404
        metrics.set_ticket_count(payload["participantCount"])
        return jsonify(payload)
