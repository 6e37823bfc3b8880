"""Integration tests against the real embedding model.

Downloads the configured sentence-transformers model on first run; enable
with ``TM_RUN_INTEGRATION=1``.
"""

import asyncio
import os

import numpy as np
import pytest

from libs.common.config import EmbeddingConfig
from tidymind_search.encoders.embedding_bridge import EmbeddingBridge
from tidymind_search.runtime.lifecycle import WorkerStatus

pytestmark = pytest.mark.skipif(
    os.environ.get("TM_RUN_INTEGRATION") != "1",
    reason="set TM_RUN_INTEGRATION=1 to run model-backed tests",
)


@pytest.mark.integration
class TestEmbeddingPipeline:
    """Test the process-backed bridge end to end."""

    @pytest.mark.asyncio
    async def test_embeddings_are_normalized_and_comparable(self):
        bridge = EmbeddingBridge(EmbeddingConfig(tm_embedding_timeout_seconds=300))
        try:
            cat, kitten, invoice = await asyncio.gather(
                bridge.embed("a cat sleeping on the sofa"),
                bridge.embed("kitten napping on a couch"),
                bridge.embed("quarterly invoice totals"),
            )

            assert bridge.state.status == WorkerStatus.READY
            assert bridge.workers_created == 1
            assert len(cat) == 384
            assert np.linalg.norm(cat) == pytest.approx(1.0, abs=1e-3)
            assert np.dot(cat, kitten) > np.dot(cat, invoice)
        finally:
            bridge.shutdown()

        assert bridge.state.status == WorkerStatus.IDLE
