import anyio
import pytest
from sqlalchemy import func, select, update

from taskgate.tracker import admission, services
from taskgate.tracker.enums import AuditAction, IssueType, TicketStatus, UserRole
from taskgate.tracker.models import Project, Task, Ticket
from taskgate.tracker.utils import AdmissionLimitReached, Forbidden, NotFound


@pytest.fixture
async def board(session, make_user):
    """A project with two tasks, a creator and an assigned developer."""
    creator = await make_user()
    head = await make_user()
    developer = await make_user()
    project = await services.create_project(
        session, creator, name="Store", project_heads=[head.id],
    )
    first = await services.create_task(
        session, creator, project_id=project.id, task_name="Cart",
        assigned_developer_id=developer.id,
    )
    second = await services.create_task(
        session, creator, project_id=project.id, task_name="Search",
    )
    return creator, developer, project, first, second


async def _counter(session, project_id):
    return await session.scalar(
        select(Project.change_request_count)
        .where(Project.id == project_id)
        .execution_options(populate_existing=True)
    )


@pytest.mark.anyio
async def test_third_change_request_is_refused_but_bug_passes(
    session, board, ticket_payload,
):
    creator, _, project, first, second = board
    await services.create_ticket(session, creator, **ticket_payload(first.id))
    await services.create_ticket(session, creator, **ticket_payload(second.id))

    with pytest.raises(AdmissionLimitReached) as exc:
        await services.create_ticket(session, creator, **ticket_payload(first.id))
    # the refusal leaves already loaded rows usable in the same session
    assert (first.task_name, project.name) == ("Cart", "Store")
    bug = await services.create_ticket(
        session, creator, **ticket_payload(first.id, IssueType.BUG),
    )

    assert exc.value.type == "major_change_limit"
    assert bug.issue_type is IssueType.BUG
    assert await _counter(session, project.id) == 2
    assert await admission.count_change_requests(session, project.id) == 2


@pytest.mark.anyio
async def test_bug_tickets_are_never_counted(session, board, ticket_payload):
    creator, _, project, first, _ = board

    for _ in range(5):
        await services.create_ticket(
            session, creator, **ticket_payload(first.id, IssueType.BUG),
        )

    assert await _counter(session, project.id) == 0
    task = await session.get(Task, first.id, populate_existing=True)
    assert task.ticket_used == 5


@pytest.mark.anyio
async def test_deleting_change_request_frees_its_slot(session, board, ticket_payload, audited):
    creator, _, project, first, second = board
    doomed = await services.create_ticket(session, creator, **ticket_payload(first.id))
    await services.create_ticket(session, creator, **ticket_payload(second.id))

    await services.delete_ticket(session, doomed.id, creator)
    admitted = await services.create_ticket(session, creator, **ticket_payload(first.id))

    assert admitted.issue_type is IssueType.CHANGE_REQUEST
    assert await _counter(session, project.id) == 2
    assert AuditAction.DELETE_TICKET.value in audited()


@pytest.mark.anyio
async def test_counters_never_go_negative(session, board, ticket_payload):
    creator, _, project, first, _ = board
    ticket = await services.create_ticket(session, creator, **ticket_payload(first.id))
    # counters drifted to zero, e.g. rows created before the counters existed
    await session.execute(update(Task).where(Task.id == first.id).values(ticket_used=0))
    await session.execute(
        update(Project).where(Project.id == project.id).values(change_request_count=0)
    )
    await session.commit()

    await services.delete_ticket(session, ticket.id, creator)

    task = await session.get(Task, first.id, populate_existing=True)
    assert task.ticket_used == 0
    assert await _counter(session, project.id) == 0


@pytest.mark.anyio
async def test_deleting_task_releases_its_change_requests(session, board, ticket_payload):
    creator, _, project, first, second = board
    await services.create_ticket(session, creator, **ticket_payload(first.id))
    await services.create_ticket(session, creator, **ticket_payload(first.id))

    await services.delete_task(session, first.id, creator)

    assert await _counter(session, project.id) == 0
    assert await session.scalar(select(func.count(Ticket.id))) == 0
    await services.create_ticket(session, creator, **ticket_payload(second.id))


@pytest.mark.anyio
async def test_concurrent_requests_cannot_share_last_slot(
    session, session_factory, board, ticket_payload,
):
    creator, _, project, first, second = board
    await services.create_ticket(session, creator, **ticket_payload(first.id))
    outcomes = []

    async def attempt(task_id: int) -> None:
        async with session_factory() as own_session:
            try:
                await services.create_ticket(
                    own_session, creator, **ticket_payload(task_id),
                )
                outcomes.append("admitted")
            except AdmissionLimitReached:
                outcomes.append("refused")

    async with anyio.create_task_group() as tg:
        tg.start_soon(attempt, first.id)
        tg.start_soon(attempt, second.id)

    assert sorted(outcomes) == ["admitted", "refused"]
    assert await _counter(session, project.id) == 2
    assert await admission.count_change_requests(session, project.id) == 2


@pytest.mark.anyio
async def test_ticket_on_unknown_or_hidden_task(session, board, make_user, ticket_payload):
    _, _, _, first, _ = board
    outsider = await make_user()

    with pytest.raises(NotFound):
        await services.create_ticket(session, outsider, **ticket_payload(999))
    with pytest.raises(Forbidden):
        await services.create_ticket(session, outsider, **ticket_payload(first.id))


@pytest.mark.anyio
async def test_resync_rebuilds_counter_from_tickets(session, board, make_user, ticket_payload):
    creator, _, project, first, _ = board
    admin = await make_user(role=UserRole.ADMIN)
    await services.create_ticket(session, creator, **ticket_payload(first.id))
    await session.execute(
        update(Project).where(Project.id == project.id).values(change_request_count=0)
    )
    await session.commit()

    with pytest.raises(Forbidden):
        await services.resync_change_requests(session, project.id, creator)
    count = await services.resync_change_requests(session, project.id, admin)

    assert count == 1
    assert await _counter(session, project.id) == 1


@pytest.mark.anyio
async def test_ticket_status_change_notifies_requester(
    session, board, make_user, ticket_payload, notified,
):
    creator, developer, _, first, _ = board
    ticket = await services.create_ticket(
        session, creator, **ticket_payload(first.id, IssueType.BUG),
    )

    await services.update_ticket(session, ticket.id, developer, status=TicketStatus.RESOLVED)

    assert ("New Ticket Created", [developer.id]) in notified()
    assert ("Ticket Status Updated", [creator.id]) in notified()
