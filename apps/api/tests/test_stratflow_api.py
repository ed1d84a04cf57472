from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.identity.models import Role, User, UserRole
from app.identity.service import identity_service
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.stratflow.models import SFIssue
from app.stratflow.service import keyify, order_at


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _staff(db_session: Session, email: str) -> tuple[User, dict[str, str]]:
    identity_service.ensure_default_roles(db_session)
    user = User(email=email, name=email.split("@")[0].title())
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return user, {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


@pytest.fixture()
def owner(db_session: Session) -> tuple[User, dict[str, str]]:
    return _staff(db_session, "pm@boaz.example.com")


def _project(client: TestClient, headers: dict[str, str], project_type: str = "KANBAN", **extra) -> dict:
    payload = {"name": "Website relaunch", "key": "web", "type": project_type, **extra}
    response = client.post("/api/stratflow/projects", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


def _columns(client: TestClient, headers: dict[str, str], board_id: str) -> dict[str, str]:
    detail = client.get(f"/api/stratflow/boards/{board_id}", headers=headers).json()["data"]
    return {column["name"]: column["id"] for column in detail["columns"]}


def _issue(client: TestClient, headers: dict[str, str], board_id: str, column_id: str, title: str) -> str:
    response = client.post(
        f"/api/stratflow/boards/{board_id}/issues",
        json={"title": title, "column_id": column_id},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["data"]["id"]


def _orders(client: TestClient, headers: dict[str, str], board_id: str, column_id: str) -> list[tuple[str, float]]:
    issues = client.get(f"/api/stratflow/boards/{board_id}/issues", headers=headers).json()["data"]["items"]
    return [(item["title"], item["order"]) for item in issues if item["column_id"] == column_id]


def test_scrum_project_gets_backlog_and_sprint_board(client: TestClient, owner) -> None:
    _, headers = owner
    created = _project(client, headers, "SCRUM")

    boards = client.get(f"/api/stratflow/projects/{created['id']}/boards", headers=headers).json()["data"]["items"]
    assert [(board["name"], board["kind"]) for board in boards] == [("Backlog", "BACKLOG"), ("Sprint Board", "KANBAN")]
    assert created["default_board_id"] == boards[1]["id"]

    columns = client.get(f"/api/stratflow/boards/{boards[1]['id']}", headers=headers).json()["data"]["columns"]
    assert [column["name"] for column in columns] == ["To Do", "In Progress", "Done"]
    assert [column["order"] for column in columns] == [1000, 2000, 3000]


def test_traditional_project_defaults_to_milestones(client: TestClient, owner) -> None:
    _, headers = owner
    created = _project(client, headers, "TRADITIONAL")
    columns = _columns(client, headers, created["default_board_id"])
    assert list(columns) == ["Not Started", "In Progress", "Blocked", "Complete"]


def test_project_key_is_normalised_and_unique_per_owner(client: TestClient, owner, db_session: Session) -> None:
    _, headers = owner
    created = _project(client, headers, key="web app")
    project = client.get(f"/api/stratflow/projects/{created['id']}", headers=headers).json()["data"]
    assert project["key"] == "WEB-APP"
    assert project["status"] == "Active"

    taken = client.post(
        "/api/stratflow/projects",
        json={"name": "Another", "key": "Web-App", "type": "KANBAN"},
        headers=headers,
    )
    assert taken.status_code == 409
    assert taken.json()["error"] == "key_taken"

    invalid = client.post("/api/stratflow/projects", json={"name": "Bad", "key": "--", "type": "KANBAN"}, headers=headers)
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "invalid_key"

    _, other_headers = _staff(db_session, "other@boaz.example.com")
    assert _project(client, other_headers, key="web app")["id"] != created["id"]


def test_projects_are_visible_to_owner_and_team_only(client: TestClient, owner, db_session: Session) -> None:
    _, headers = owner
    member, member_headers = _staff(db_session, "dev@boaz.example.com")
    _, outsider_headers = _staff(db_session, "outsider@boaz.example.com")
    created = _project(client, headers, team_ids=[str(member.id), str(member.id), " "])

    project = client.get(f"/api/stratflow/projects/{created['id']}", headers=member_headers).json()["data"]
    assert project["team_ids"] == [str(member.id)]

    assert [item["id"] for item in client.get("/api/stratflow/projects", headers=member_headers).json()["data"]["items"]] == [created["id"]]
    assert client.get("/api/stratflow/projects", headers=outsider_headers).json()["data"]["items"] == []

    denied = client.get(f"/api/stratflow/boards/{created['default_board_id']}", headers=outsider_headers)
    assert denied.status_code == 403
    assert denied.json()["error"] == "forbidden"


def test_issues_append_and_move_between_neighbours(client: TestClient, owner) -> None:
    _, headers = owner
    board_id = _project(client, headers)["default_board_id"]
    columns = _columns(client, headers, board_id)
    todo, doing = columns["To Do"], columns["In Progress"]

    first = _issue(client, headers, board_id, todo, "First")
    _issue(client, headers, board_id, todo, "Second")
    third = _issue(client, headers, board_id, todo, "Third")
    assert _orders(client, headers, board_id, todo) == [("First", 1000), ("Second", 2000), ("Third", 3000)]

    moved = client.patch(f"/api/stratflow/issues/{third}/move", json={"to_column_id": todo, "to_index": 1}, headers=headers)
    assert moved.json() == {"data": {"ok": True}, "error": None}
    assert _orders(client, headers, board_id, todo) == [("First", 1000), ("Third", 1500), ("Second", 2000)]

    client.patch(f"/api/stratflow/issues/{first}/move", json={"to_column_id": doing, "to_index": 5}, headers=headers)
    assert _orders(client, headers, board_id, doing) == [("First", 1000)]

    client.patch(f"/api/stratflow/issues/{third}/move", json={"to_column_id": doing, "to_index": 0}, headers=headers)
    assert _orders(client, headers, board_id, doing) == [("Third", 0), ("First", 1000)]


def test_move_past_end_of_column_appends(client: TestClient, owner) -> None:
    _, headers = owner
    board_id = _project(client, headers)["default_board_id"]
    todo = _columns(client, headers, board_id)["To Do"]
    first = _issue(client, headers, board_id, todo, "First")
    _issue(client, headers, board_id, todo, "Second")
    _issue(client, headers, board_id, todo, "Third")

    client.patch(f"/api/stratflow/issues/{first}/move", json={"to_column_id": todo, "to_index": 99999}, headers=headers)
    assert _orders(client, headers, board_id, todo) == [("Second", 2000), ("Third", 3000), ("First", 4000)]


def test_move_reindexes_crowded_column(client: TestClient, owner, db_session: Session) -> None:
    _, headers = owner
    board_id = _project(client, headers)["default_board_id"]
    todo = _columns(client, headers, board_id)["To Do"]
    ids = [_issue(client, headers, board_id, todo, title) for title in ("A", "B", "C")]

    crowded = {ids[0]: 1000.0, ids[1]: 1000.5}
    for issue in db_session.scalars(select(SFIssue).where(SFIssue.id.in_([uuid.UUID(item) for item in crowded]))).all():
        issue.order = crowded[str(issue.id)]
    db_session.commit()

    client.patch(f"/api/stratflow/issues/{ids[2]}/move", json={"to_column_id": todo, "to_index": 1}, headers=headers)
    assert _orders(client, headers, board_id, todo) == [("A", 1000), ("C", 1500), ("B", 2000)]


def test_move_rejects_column_from_other_board(client: TestClient, owner) -> None:
    _, headers = owner
    first_board = _project(client, headers)["default_board_id"]
    second_board = _project(client, headers, key="ops")["default_board_id"]
    issue = _issue(client, headers, first_board, _columns(client, headers, first_board)["To Do"], "Stray")
    foreign_column = _columns(client, headers, second_board)["Done"]

    response = client.patch(
        f"/api/stratflow/issues/{issue}/move",
        json={"to_column_id": foreign_column, "to_index": 0},
        headers=headers,
    )
    assert response.status_code == 404
    assert response.json()["error"] == "column_not_found"


def test_order_at_and_keyify() -> None:
    assert order_at([], 0) == 1000
    assert order_at([1000, 2000], 0) == 0
    assert order_at([1000, 2000], 1) == 1500
    assert order_at([1000, 2000], 2) == 3000
    assert order_at([1000, 1000.5], 1) is None
    assert order_at([1000, 2000, 3000], 10) == 4000
    assert keyify("  my project! ") == "MY-PROJECT"
    assert keyify("a" * 20) == "A" * 12
