import logging
import time
from typing import Dict, List, Sequence

from fastapi import APIRouter, Depends, HTTPException

from dfs_sim.errors import ValidationError
from dfs_sim.models.simulation import SimulateRequest, SimulateResponse
from dfs_sim.optimizer.correlation import build_correlation_matrix
from dfs_sim.optimizer.models import GeneratedLineup, Player
from dfs_sim.service import OptimizationService, Timeout, get_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v2", tags=["simulation"])


def lineups_from_ids(lineups: Sequence[Sequence[int]], by_id: Dict[int, Player]) -> List[GeneratedLineup]:
    built = []
    for index, ids in enumerate(lineups):
        unknown = sorted(pid for pid in ids if pid not in by_id)
        if unknown:
            raise ValidationError(f"lineup {index} references unknown players: {unknown}")
        if len(set(ids)) != len(ids):
            raise ValidationError(f"lineup {index} contains duplicate players")
        built.append(GeneratedLineup.from_players([by_id[pid] for pid in ids]))
    return built


@router.post("/simulate", response_model=SimulateResponse)
def simulate_lineups(request: SimulateRequest, service: OptimizationService = Depends(get_service)):
    """Run a correlated Monte Carlo contest simulation for a set of lineups"""
    start_time = time.time()

    try:
        players = [p.to_player() for p in request.players]
        by_id = {p.player_id: p for p in players}
        if len(by_id) != len(players):
            raise ValidationError("player pool contains duplicate player ids")
        rules = None
        if request.correlation is not None:
            rules = [r.to_rule() for r in request.correlation]
        rules = service.correlation_rules(rules)
        result = service.simulate(
            lineups_from_ids(request.lineups, by_id),
            contest_type=request.contest_type,
            iterations=request.iterations,
            correlation=build_correlation_matrix(players, rules),
            seed=request.seed,
            entry_fee=request.entry_fee,
            field_lineups=lineups_from_ids(request.field_lineups, by_id),
            pool=players,
            field_size=request.field_size,
            salary_cap=request.salary_cap,
            timeout=request.timeout,
        )
    except ValidationError as e:
        logger.info(f"Rejected simulate request: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    if isinstance(result, Timeout):
        return SimulateResponse(status="timeout", reason=result.reason, execution_time=time.time() - start_time)

    return SimulateResponse(
        status="partial" if result.partial else "ok",
        lineups=[lineup.to_dict() for lineup in result.lineups],
        portfolio=result.portfolio.to_dict(),
        seed=result.seed,
        contest_type=result.contest_type.value,
        iterations_requested=result.iterations_requested,
        iterations_completed=result.iterations_completed,
        field_size=result.field_size,
        execution_time=time.time() - start_time,
        cache_hit=result.cache_hit,
    )
