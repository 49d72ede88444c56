import copy

import pytest

from config import SyncSettings
from database.local_store import LocalStore
from models.bom_models import Material, Part, ProductFamily
from services.catalog import Catalog
from services.history import ActivityLog, HistoryLedger
from services.identity import price_id
from services.override_store import OverrideStore


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeRemote:
    """In-memory shared document; queued exceptions are raised one per call"""

    def __init__(self, files=None):
        self.files = copy.deepcopy(files or {})
        self.failures = []
        self.get_calls = 0
        self.patch_calls = 0
        self.patches = []

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    def get(self):
        self.get_calls += 1
        self._maybe_fail()
        return copy.deepcopy(self.files)

    def patch(self, files):
        self.patch_calls += 1
        self._maybe_fail()
        self.patches.append(copy.deepcopy(files))
        self.files.update(copy.deepcopy(files))


TEMPLATES = {
    "파렛트랙": {
        "2080x1000": {"H1500": {"4단": {"독립형": {"components": [
            {"name": "기둥", "quantity": 4},
            {"name": "로드빔", "quantity": 8},
            {"name": "타이빔", "quantity": 8},
            {"name": "수평브레싱", "quantity": 4},
            {"name": "안전핀", "quantity": 16},
            {"name": "베이스볼트", "quantity": 8},
        ]}}}}
    },
    "경량랙": {
        "W900xD450": {"H1500": {"4단": {"독립형": {"components": [
            {"name": "기둥", "quantity": 4, "unit_price": 4500, "total_price": 18000},
            {"name": "선반", "quantity": 4, "unit_price": 9000, "total_price": 36000},
            {"name": "받침(상)", "quantity": 4, "unit_price": 700, "total_price": 2800},
            {"name": "받침(하)", "quantity": 4, "unit_price": 700, "total_price": 2800},
            {"name": "연결대", "quantity": 0, "unit_price": 3000, "total_price": 0},
            {"name": "안전좌", "quantity": 16, "unit_price": 100, "total_price": 1600},
            {"name": "안전핀", "quantity": 16, "unit_price": 50, "total_price": 800},
        ]}}}}
    },
}

BASE_PRICES = {
    "경량랙": {"기본가격": {"W900xD450": {"H900": {"3단": {"독립형": 52000}}}}},
    "하이랙": {"기본가격": {"메트그레이(볼트식)270kg": {"45x150": {"H1500": {"4단": 180000}}}}},
    "파렛트랙 철판형": {"기본가격": {"독립형": {"2080x1000": {"1500": {"3단": 560000}}}}},
    "스텐랙": {"기본가격": {"50x75": {"75": {"4단": 210000}}}},
}

EXTRA_OPTIONS = {
    "경량랙": {"추가옵션": [
        {"id": "l1-2", "name": "바퀴", "price": 12000, "specification": "4개 1세트"},
    ]},
    "파렛트랙": {"추가옵션": [
        {"id": "p1-1", "name": "철판 추가", "price": 0, "bom": [
            {"name": "철판", "specification": "2080", "quantity": 3, "unit_price": 38000},
        ]},
        {"id": "p1-2", "name": "랙 보호대", "price": 25000, "bom": [
            {"name": "기둥보호대", "specification": "H400", "quantity": 1},
        ]},
    ]},
}

PALLET_MATERIAL_PRICES = [
    ("기둥(H1500)", "높이 H1500", 42000),
    ("로드빔(2080)", "2080", 23000),
    ("타이빔(1000)", "1000", 7000),
    ("안전핀(파렛트랙)", "안전핀", 300),
    ("수평브레싱", "1000", 6500),
    ("경사브레싱", "1000", 7500),
    ("앙카볼트", "", 900),
    ("브레싱볼트", "", 400),
    ("브러싱고무", "", 250),
]


def pallet_materials():
    materials = []
    for name, spec, price in PALLET_MATERIAL_PRICES:
        part = Part(product_family=ProductFamily.PALLET_RACK, name=name, specification=spec)
        materials.append(Material(
            part_id=price_id(part), product_family=ProductFamily.PALLET_RACK.value,
            name=name, specification=spec, unit_price=price
        ))
    return materials


@pytest.fixture
def catalog():
    return Catalog(
        templates=copy.deepcopy(TEMPLATES),
        base_prices=copy.deepcopy(BASE_PRICES),
        extra_options=copy.deepcopy(EXTRA_OPTIONS),
        materials=pallet_materials(),
    )


@pytest.fixture
def local_store(tmp_path):
    store = LocalStore(str(tmp_path / "local.db"))
    yield store
    store.close()


@pytest.fixture
def override_store(local_store):
    store = OverrideStore(local_store)
    yield store
    store.close()


@pytest.fixture
def ledger(local_store):
    return HistoryLedger(local_store)


@pytest.fixture
def activity(local_store):
    return ActivityLog(local_store)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def settings():
    return SyncSettings(
        debounce_seconds=30,
        poll_seconds=300,
        max_retries=3,
        retry_delay_seconds=1.0,
        backoff_base_seconds=30,
        backoff_max_seconds=300,
        tick_seconds=0.01,
    )
