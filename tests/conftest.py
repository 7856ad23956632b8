import pytest

from app_factory import create_app, db
from smartpark.models import ParkingSlot, User
from smartpark.store import EntityStore


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "CACHE_TYPE": "NullCache",
        "EXPORT_FOLDER": str(tmp_path / "exports"),
        "ADMIN_USERNAME": "admin",
        "ADMIN_PASSWORD": "admin123",
        "SEED_ADMIN": True,
        "LOG_LEVEL": "WARNING",
        "MAIL_DEFAULT_SENDER": "smartpark@example.com",
        "MAIL_SUPPRESS_SEND": True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return EntityStore(db.session)


@pytest.fixture
def slots(store):
    """Three available slots on the ground floor: A01, A02, A03."""
    with store.transaction():
        created = [
            store.insert(ParkingSlot(slot_number=f"A0{i}", location="Ground Floor"))
            for i in range(1, 4)
        ]
    return created


def _login(client, username, password):
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.get_json()
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return _login(client, "admin", "admin123")


@pytest.fixture
def user_headers(app, client):
    user = User(username="attendant", role="user")
    user.set_password("secret1")
    db.session.add(user)
    db.session.commit()
    return _login(client, "attendant", "secret1")
