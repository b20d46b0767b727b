import logging
import time

from fastapi import APIRouter, Depends, HTTPException

from dfs_sim.errors import ValidationError
from dfs_sim.models.optimizer import OptimizeRequest, OptimizeResponse
from dfs_sim.progress import QueueProgressReporter
from dfs_sim.service import (
    Infeasible, OptimizationRequest, OptimizationService, Timeout, get_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v2", tags=["optimizer"])


@router.post("/optimize", response_model=OptimizeResponse)
def optimize_lineups(request: OptimizeRequest, service: OptimizationService = Depends(get_service)):
    """
    Generate optimized DFS lineups with dynamic programming and branch-and-bound.
    Infeasible and timed out requests still return 200 with the matching status.
    """
    start_time = time.time()

    try:
        constraints = request.constraints.to_constraints()
        result = service.optimize(OptimizationRequest(
            pool=[p.to_player() for p in request.players],
            constraints=constraints,
            strategy=request.strategy,
            num_lineups=request.num_lineups,
            mode=request.mode,
            correlation_rules=[r.to_rule() for r in request.correlation] if request.correlation is not None else None,
            timeout=request.timeout,
            history=request.history or None,
        ))
    except ValidationError as e:
        logger.info(f"Rejected optimize request: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    if isinstance(result, Infeasible):
        return OptimizeResponse(status="infeasible", reason=result.reason,
                                execution_time=time.time() - start_time)
    if isinstance(result, Timeout):
        return OptimizeResponse(status="timeout", reason=result.reason, states_explored=result.states_explored,
                                execution_time=time.time() - start_time)

    return OptimizeResponse(
        status="partial" if result.partial else "ok",
        lineups=[lineup.to_dict(constraints.platform) for lineup in result.lineups],
        num_lineups=len(result.lineups),
        exposure=result.report.to_dict(),
        execution_time=time.time() - start_time,
        states_explored=result.states_explored,
        memo_hits=result.memo_hits,
        cache_hit=result.cache_hit,
        degraded_players=result.degraded_players,
    )


@router.get("/progress")
def progress_events(service: OptimizationService = Depends(get_service)):
    """Drain progress events queued since the last call"""
    reporter = service.progress
    if not isinstance(reporter, QueueProgressReporter):
        return {"events": [], "dropped": 0}
    return {"events": [event.to_dict() for event in reporter.drain()], "dropped": reporter.dropped}


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "dfs-sim"}
