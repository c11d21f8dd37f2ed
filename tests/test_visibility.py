import pytest
from sqlalchemy import select

from taskgate.tracker import services, visibility
from taskgate.tracker.enums import IssueType, MemberRole, ResourceKind, UserRole
from taskgate.tracker.models import Project, Task, Ticket
from taskgate.tracker.permissions import PermissionChecker, verify_visible
from taskgate.tracker.utils import Forbidden, InvalidInput, NotFound


async def _visible_ids(session, actor, kind, model, **kw):
    q = select(model.id).where(visibility.resolve(actor, kind, **kw))
    return set((await session.execute(q)).scalars().all())


@pytest.mark.anyio
async def test_admin_sees_everything(session, make_user):
    creator = await make_user()
    head = await make_user()
    admin = await make_user(role=UserRole.ADMIN)
    project = await services.create_project(
        session, creator, name="Intranet", project_heads=[head.id],
    )

    assert await _visible_ids(session, admin, ResourceKind.PROJECT, Project) == {project.id}


@pytest.mark.anyio
async def test_project_relationships_grant_visibility(session, make_user):
    creator = await make_user()
    head = await make_user()
    member = await make_user()
    assignee = await make_user()
    outsider = await make_user()
    project = await services.create_project(
        session,
        creator,
        name="Shop",
        project_heads=[head.id],
        members=[(member.id, MemberRole.QA)],
        assigned_to_id=assignee.id,
    )

    for actor in (creator, head, member, assignee):
        ids = await _visible_ids(session, actor, ResourceKind.PROJECT, Project)
        assert ids == {project.id}
    assert await _visible_ids(session, outsider, ResourceKind.PROJECT, Project) == set()


@pytest.mark.anyio
async def test_assigned_developer_sees_task_and_tickets_of_hidden_project(
    session, make_user, ticket_payload,
):
    creator = await make_user()
    head = await make_user()
    developer = await make_user()
    project = await services.create_project(
        session, creator, name="Portal", project_heads=[head.id],
    )
    task = await services.create_task(
        session,
        creator,
        project_id=project.id,
        task_name="Login page",
        assigned_developer_id=developer.id,
    )
    ticket = await services.create_ticket(
        session, creator, **ticket_payload(task.id, IssueType.BUG),
    )

    assert await _visible_ids(session, developer, ResourceKind.PROJECT, Project) == set()
    assert await _visible_ids(session, developer, ResourceKind.TASK, Task) == {task.id}
    assert await _visible_ids(session, developer, ResourceKind.TICKET, Ticket) == {ticket.id}
    assert (await services.get_task(session, task.id, developer)).id == task.id
    assert (await services.get_ticket(session, ticket.id, developer)).id == ticket.id


@pytest.mark.anyio
async def test_ticket_requester_keeps_sight_of_own_ticket(session, make_user, ticket_payload):
    creator = await make_user()
    head = await make_user()
    reporter = await make_user()
    project = await services.create_project(
        session,
        creator,
        name="CRM",
        project_heads=[head.id],
        members=[(reporter.id, MemberRole.QA)],
    )
    task = await services.create_task(
        session, creator, project_id=project.id, task_name="Reports",
    )
    ticket = await services.create_ticket(
        session, reporter, **ticket_payload(task.id, IssueType.BUG),
    )
    await services.update_project(session, project.id, creator, members=[])

    assert await _visible_ids(session, reporter, ResourceKind.TASK, Task) == set()
    assert await _visible_ids(session, reporter, ResourceKind.TICKET, Ticket) == {ticket.id}


@pytest.mark.anyio
async def test_adding_member_only_widens_visibility(session, make_user, ticket_payload):
    creator = await make_user()
    head = await make_user()
    actor = await make_user()
    project_a = await services.create_project(
        session, creator, name="A", project_heads=[head.id],
    )
    project_b = await services.create_project(
        session, creator, name="B", project_heads=[head.id],
    )
    assigned = await services.create_task(
        session, creator, project_id=project_a.id, task_name="mine",
        assigned_developer_id=actor.id,
    )
    other = await services.create_task(
        session, creator, project_id=project_b.id, task_name="theirs",
    )

    before_tasks = await _visible_ids(session, actor, ResourceKind.TASK, Task)
    await services.update_project(
        session, project_b.id, creator,
        members=[(creator.id, MemberRole.MANAGER), (actor.id, MemberRole.DEVELOPER)],
    )
    after_tasks = await _visible_ids(session, actor, ResourceKind.TASK, Task)

    assert before_tasks == {assigned.id}
    assert before_tasks <= after_tasks
    assert after_tasks == {assigned.id, other.id}


@pytest.mark.anyio
async def test_department_grant_only_applies_to_single_reads(session, make_user):
    creator = await make_user(department="design")
    head = await make_user()
    colleague = await make_user(department="design")
    project = await services.create_project(
        session, creator, name="Rebrand", project_heads=[head.id],
    )

    listed = await services.list_visible(session, colleague, ResourceKind.PROJECT)
    fetched = await services.get_project(session, project.id, colleague)

    assert listed == []
    assert fetched.id == project.id
    assert await PermissionChecker.can_see(
        session, colleague, ResourceKind.PROJECT, project.id, single_record=True,
    )


@pytest.mark.anyio
async def test_verify_visible_distinguishes_missing_from_hidden(session, make_user):
    creator = await make_user()
    head = await make_user()
    outsider = await make_user()
    project = await services.create_project(
        session, creator, name="Secret", project_heads=[head.id],
    )

    with pytest.raises(NotFound):
        await verify_visible(session, outsider, ResourceKind.PROJECT, 9999)
    with pytest.raises(Forbidden):
        await verify_visible(session, outsider, ResourceKind.PROJECT, project.id)


@pytest.mark.anyio
async def test_list_filters_narrow_visible_set(session, make_user):
    creator = await make_user()
    head = await make_user()
    project = await services.create_project(
        session, creator, name="Docs", project_heads=[head.id],
    )
    todo = await services.create_task(
        session, creator, project_id=project.id, task_name="write",
    )
    await services.create_task(
        session, creator, project_id=project.id, task_name="review",
        assigned_developer_id=head.id,
    )

    tasks = await services.list_visible(
        session, creator, ResourceKind.TASK, assigned_developer_id=None, task_name="write",
    )
    assert [t.id for t in tasks] == [todo.id]

    with pytest.raises(InvalidInput):
        await services.list_visible(session, creator, ResourceKind.TASK, colour="red")
