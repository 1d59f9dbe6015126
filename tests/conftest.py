import asyncio
import copy
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.read_model_schemas import ModelResolved
from services.feature_flags import feature_flags
from services.obs.metrics import metrics_collector


class FakeStore:
    """In-memory document store that records every call."""

    def __init__(self, docs=None):
        self.docs = copy.deepcopy(docs or {})
        self.get_calls = []
        self.multi_get_calls = []
        self.failing = set()
        self.delays = {}

    def add(self, collection, doc_id, doc):
        self.docs.setdefault(collection, {})[doc_id] = doc

    async def get_by_id(self, collection, doc_id):
        self.get_calls.append((collection, doc_id))
        if collection in self.failing:
            raise RuntimeError(f"{collection} unavailable")
        await asyncio.sleep(self.delays.get(collection, 0))
        doc = self.docs.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def multi_get(self, collection, ids):
        self.multi_get_calls.append((collection, list(ids)))
        if collection in self.failing:
            raise RuntimeError(f"{collection} unavailable")
        await asyncio.sleep(self.delays.get(collection, 0))
        found = self.docs.get(collection, {})
        return [copy.deepcopy(found.get(i)) if i in found else None for i in ids]

    def calls_for(self, collection):
        return [ids for name, ids in self.multi_get_calls if name == collection]


class FakeResolver:
    """Name resolver answering from plain dicts ("" when unknown)."""

    def __init__(
        self,
        product_names=None,
        token_names=None,
        brand_names=None,
        company_names=None,
        brand_companies=None,
        variants=None,
        failing=False,
    ):
        self.product_names = product_names or {}
        self.token_names = token_names or {}
        self.brand_names = brand_names or {}
        self.company_names = company_names or {}
        self.brand_companies = brand_companies or {}
        self.variants = variants or {}
        self.failing = failing
        self.calls = []

    async def _answer(self, kind, key, table, default=""):
        self.calls.append((kind, key))
        if self.failing:
            raise RuntimeError("resolver down")
        return table.get(key, default)

    async def resolve_product_name(self, product_blueprint_id):
        return await self._answer("product", product_blueprint_id, self.product_names)

    async def resolve_token_name(self, token_blueprint_id):
        return await self._answer("token", token_blueprint_id, self.token_names)

    async def resolve_brand_name(self, brand_id):
        return await self._answer("brand", brand_id, self.brand_names)

    async def resolve_company_name(self, company_id):
        return await self._answer("company", company_id, self.company_names)

    async def resolve_brand_company_id(self, brand_id):
        return await self._answer("brand_company", brand_id, self.brand_companies)

    async def resolve_model_variant(self, model_id):
        return await self._answer("model", model_id, self.variants, ModelResolved())

    def called(self, kind):
        return [key for k, key in self.calls if k == kind]


@pytest.fixture(autouse=True)
def reset_runtime_state():
    feature_flags.reset()
    metrics_collector.reset()
    yield
    feature_flags.reset()
    metrics_collector.reset()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def make_resolver():
    return FakeResolver
