import os
import pytest
from fbatrack import create_app
from fbatrack.errors import StorageError
from fbatrack.models import db, Asin, Shipment, User
from fbatrack.packing.csv_import import CsvUpload, import_pack_group_csvs
from dotenv import load_dotenv

load_dotenv()

# in-memory SQLite unless a real database is provided
TEST_DB_URL = os.getenv("DATABASE_URL_TEST", "sqlite://")

_PACK_GROUP_CSV = """Pack group:,1
Total box count:,2
,
SKU,Product title,ASIN,FNSKU,Condition,Prep type,Who preps units?,Expected quantity
SKU-ALPHA,"Alpha Widget, blue",B000000001,X000AAAA01,NewItem,None,Seller,10
SKU-BETA,Beta Gadget,B000000002,X000BBBB02,NewItem,Labeling,Seller,4
,
Name of box,Box weight (kg):,Box width (cm):,Box length (cm):,Box height (cm):
"""


class InMemoryReceiptStore:
    """Receipt store double keyed like the Supabase bucket: ``{user_id}/{name}``."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.fail_downloads: set[str] = set()

    def list_receipts(self, user_id) -> list[str]:
        prefix = f"{user_id}/"
        return sorted(k[len(prefix):] for k in self.blobs if k.startswith(prefix))

    def download(self, user_id, name: str) -> bytes:
        key = f"{user_id}/{name}"
        if name in self.fail_downloads or key not in self.blobs:
            raise StorageError(f"not found: {key}", status_code=404)
        return self.blobs[key]

    def upload(self, user_id, name: str, content: bytes, content_type=None) -> str:
        key = f"{user_id}/{name}"
        if key in self.blobs:
            raise StorageError(f"duplicate: {key}", status_code=409)
        self.blobs[key] = content
        return key


@pytest.fixture(scope="session")
def app():
    os.environ["APP_ENV"] = "test"
    app = create_app(
        env_name="test",
        config_overrides={
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": TEST_DB_URL,
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        },
    )

    with app.app_context():
        db.drop_all()
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()

@pytest.fixture(autouse=True)
def _reset_db_per_test(app):
    with app.app_context():
        db.drop_all()
        db.create_all()
        yield
        db.session.remove()

@pytest.fixture(autouse=True)
def receipt_store(app):
    store = InMemoryReceiptStore()
    app.extensions["receipt_store"] = store
    yield store
    app.extensions.pop("receipt_store", None)

@pytest.fixture()
def client(app):
    return app.test_client()


def _auth_headers(client, email="tester@fbatrack.local", password="Secret!123"):
    # log in, registering the account first if it does not exist yet
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    if r.status_code == 401:
        rr = client.post("/api/auth/register", json={"email": email, "password": password, "name": "Tester"})
        assert rr.status_code == 201, rr.text
        r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    access = r.get_json()["access_token"]
    return {"Authorization": f"Bearer {access}"}

@pytest.fixture()
def auth_headers(client):
    return _auth_headers(client)

@pytest.fixture()
def other_headers(client):
    return _auth_headers(client, email="someone-else@fbatrack.local")

@pytest.fixture()
def user_id(auth_headers):
    return db.session.scalar(db.select(User.id).where(User.email == "tester@fbatrack.local"))

@pytest.fixture()
def seed_asins(user_id):
    """Catalog entries for the two ASINs in the pack group CSV (250 g and 0.5 kg per unit)."""
    a = Asin(user_id=user_id, asin="B000000001", title="Alpha Widget", weight=250, weight_unit="g")
    b = Asin(user_id=user_id, asin="B000000002", title="Beta Gadget", weight=0.5, weight_unit="kg", fnsku="OLDFNSKU")
    db.session.add_all([a, b])
    db.session.commit()
    return {"alpha": a.id, "beta": b.id}

@pytest.fixture()
def pack_group_csv():
    """Pack group 1 export: two ASINs (10 and 4 units) and two boxes."""
    return _PACK_GROUP_CSV

@pytest.fixture()
def shipment_id(user_id, seed_asins, pack_group_csv):
    up = CsvUpload(filename="Pack Group 1.csv", content=pack_group_csv, mimetype="text/csv")
    return import_pack_group_csvs(user_id, "Test Shipment", [up]).shipment_id

def _cells(shipment_id):
    """Ids of the imported pack group: ``(items by ASIN, box ids in order)``."""
    pg = db.session.get(Shipment, shipment_id).pack_groups[0]
    return {i.asin: i.id for i in pg.items}, [b.id for b in pg.boxes]

@pytest.fixture()
def ids(shipment_id):
    items, boxes = _cells(shipment_id)
    return {"alpha": items["B000000001"], "beta": items["B000000002"], "box1": boxes[0], "box2": boxes[1]}
