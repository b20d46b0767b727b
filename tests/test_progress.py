from dfs_sim.optimizer.models import Constraints, Player
from dfs_sim.progress import (
    EventType, NullProgressReporter, ProgressEvent, ProgressTracker, QueueProgressReporter,
)
from dfs_sim.service import Infeasible, OptimizationRequest, OptimizationService


def event(event_type, progress=0.5):
    return ProgressEvent(type=event_type, progress=progress)


def test_full_queue_drops_intermediate_events():
    reporter = QueueProgressReporter(maxsize=2)

    assert reporter.emit(event(EventType.PROGRESS))
    assert reporter.emit(event(EventType.PROGRESS))
    assert not reporter.emit(event(EventType.PROGRESS))
    assert reporter.dropped == 1


def test_terminal_event_always_delivered():
    reporter = QueueProgressReporter(maxsize=2)
    reporter.emit(event(EventType.STARTED, 0.0))
    reporter.emit(event(EventType.PROGRESS))

    assert reporter.emit(event(EventType.COMPLETED, 1.0))
    events = reporter.drain()
    assert [e.type for e in events] == [EventType.PROGRESS, EventType.COMPLETED]
    assert events[-1].progress == 1.0


def test_tracker_emits_one_terminal_event():
    reporter = QueueProgressReporter(maxsize=16)
    tracker = ProgressTracker(reporter, total_steps=2, label="test")
    tracker.start()
    tracker.advance()
    tracker.advance()
    tracker.complete()
    tracker.fail("too late")
    tracker.advance()

    events = reporter.drain()
    assert [e.type for e in events] == [EventType.STARTED, EventType.PROGRESS, EventType.PROGRESS,
                                        EventType.COMPLETED]
    assert all(e.progress < 1.0 for e in events[:-1])
    assert events[-1].progress == 1.0
    assert events[2].step == 2


def test_null_reporter_accepts_everything():
    assert NullProgressReporter().emit(event(EventType.PROGRESS))


def test_optimization_reports_each_lineup():
    pool = [Player(player_id=i, positions=("G",), salary=5000, projection=10.0 + i) for i in range(1, 6)]
    reporter = QueueProgressReporter(maxsize=64)
    service = OptimizationService()
    service.optimize(OptimizationRequest(pool=pool, constraints=Constraints(salary_cap=50000, positions={"G": 2}),
                                         num_lineups=3), progress=reporter)

    types = [e.type for e in reporter.drain()]
    assert types[0] == EventType.STARTED
    assert types.count(EventType.LINEUP_GENERATED) == 3
    assert types[-1] == EventType.COMPLETED


def test_infeasible_optimization_ends_with_failed_event():
    pool = [Player(player_id=i, positions=("G",), salary=9000, projection=10.0) for i in range(1, 3)]
    reporter = QueueProgressReporter(maxsize=64)
    result = OptimizationService().optimize(
        OptimizationRequest(pool=pool, constraints=Constraints(salary_cap=10000, positions={"G": 2})),
        progress=reporter)

    assert isinstance(result, Infeasible)
    assert reporter.drain()[-1].type == EventType.FAILED
