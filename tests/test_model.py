"""Tests for shape resolution, buffers, backups and the SGD context."""
import gc

import numpy as np
import pytest
import torch

from convrbm import ConvRBM, ConvRBMError, NotInitializedError, SGDContext, ShapeError
from conftest import make_layer


class TestShapeResolution:
    """init_layer derives filter shapes and allocates every tensor."""

    @pytest.mark.parametrize(
        "nv1,nv2,nh1,nh2",
        [(4, 4, 3, 3), (6, 5, 2, 5), (28, 28, 24, 20), (3, 3, 3, 3), (7, 9, 1, 1)],
    )
    def test_filter_dims_positive(self, nv1, nv2, nh1, nh2):
        """nw = nv - nh + 1 is positive whenever nh <= nv."""
        layer = make_layer(shape=(2, nv1, nv2, 3, nh1, nh2))
        assert layer.nw1 == nv1 - nh1 + 1 > 0
        assert layer.nw2 == nv2 - nh2 + 1 > 0
        assert layer.W.shape == (3, 2, layer.nw1, layer.nw2)

    def test_buffer_shapes(self, binary_layer):
        """Parameters and phase buffers have their exact shapes."""
        assert binary_layer.b.shape == (3,)
        assert binary_layer.c.shape == (2,)
        for name in ("v1", "v2_a", "v2_s"):
            assert getattr(binary_layer, name).shape == (2, 6, 6)
        for name in ("h1_a", "h1_s", "h2_a", "h2_s"):
            assert getattr(binary_layer, name).shape == (3, 4, 4)

    def test_unallocated_before_init(self):
        """Without dimensions nothing is allocated."""
        layer = ConvRBM({"model": {"hidden_unit": "relu"}})
        assert not layer.initialized
        assert layer.W is None and layer.v1 is None
        with pytest.raises(NotInitializedError):
            layer.activate_hidden(torch.zeros(1, 4, 4))

    def test_init_layer_after_construction(self):
        layer = ConvRBM({})
        layer.init_layer(1, 5, 5, 2, 3, 3)
        assert layer.initialized
        assert layer.W.shape == (2, 1, 3, 3)

    def test_reinit_reshapes_and_rerandomizes(self, binary_layer):
        """Calling init_layer again replaces shapes and values."""
        old = binary_layer.W.detach().clone()
        binary_layer.init_layer(2, 6, 6, 3, 4, 4)
        assert not torch.equal(old, binary_layer.W)

        binary_layer.init_layer(1, 8, 8, 5, 4, 4)
        assert binary_layer.W.shape == (5, 1, 5, 5)
        assert binary_layer.v1.shape == (1, 8, 8)

    def test_binary_init(self):
        """Logistic hidden units start with a small negative bias."""
        layer = make_layer(shape=(2, 10, 10, 8, 6, 6))
        assert torch.allclose(layer.b, torch.full((8,), -0.1))
        assert torch.equal(layer.c, torch.zeros(2))
        assert 0.005 < layer.W.std().item() < 0.02

    @pytest.mark.parametrize("hidden", ["relu", "relu6", "relu1"])
    def test_relu_init(self, hidden):
        """ReLU hidden units start with zero biases."""
        layer = make_layer(hidden=hidden, shape=(2, 10, 10, 8, 6, 6))
        assert torch.equal(layer.b, torch.zeros(8))
        assert torch.equal(layer.c, torch.zeros(2))
        assert 0.005 < layer.W.std().item() < 0.02

    def test_module_dtype_conversion(self, binary_layer):
        """Parameters and buffers follow .to(dtype)."""
        layer = binary_layer.to(torch.float64)
        assert layer.W.dtype == torch.float64
        assert layer.v1.dtype == torch.float64
        h_a, _ = layer.activate_hidden(torch.rand(2, 6, 6))
        assert h_a.dtype == torch.float64


class TestQueries:
    """Dimension queries and the summary string."""

    def test_sizes(self):
        layer = make_layer(shape=(1, 28, 28, 16, 20, 20))
        assert layer.input_size() == 28 * 28
        assert layer.output_size() == 16 * 20 * 20
        assert layer.parameters_count() == 16 * 9 * 9

    def test_short_string(self):
        layer = make_layer(hidden="relu6", shape=(3, 28, 28, 16, 20, 20))
        assert layer.to_short_string() == "CRBM(dyn)(RELU6): 28x28x3 -> (9x9) -> 20x20x16"
        assert "CRBM(dyn)(RELU6)" in repr(layer)


class TestInputAdapter:
    """Inputs of any representation become canonical tensors."""

    def test_flat_list(self, binary_layer):
        v = binary_layer.as_visible([0.0] * 72)
        assert v.shape == (2, 6, 6)
        assert v.dtype == binary_layer.W.dtype

    def test_numpy(self, binary_layer):
        v = binary_layer.as_visible(np.ones((72,), dtype=np.float64))
        assert v.shape == (2, 6, 6)
        assert v.dtype == torch.float32

    def test_wrong_size(self, binary_layer):
        with pytest.raises(ShapeError):
            binary_layer.as_visible(torch.zeros(71))
        with pytest.raises(ShapeError):
            binary_layer.as_hidden(torch.zeros(2, 6, 6))

    def test_batch_adapter(self, binary_layer):
        assert binary_layer.as_visible_batch(torch.zeros(5, 72)).shape == (5, 2, 6, 6)
        assert binary_layer.as_visible_batch(torch.zeros(2, 6, 6)).shape == (1, 2, 6, 6)
        with pytest.raises(ShapeError):
            binary_layer.as_visible_batch(torch.zeros(100))


class TestBufferFactories:
    """Factories return fresh, correctly shaped buffers."""

    def test_shapes(self, binary_layer):
        assert binary_layer.prepare_input().shape == (2, 6, 6)
        assert binary_layer.prepare_one_output().shape == (3, 4, 4)
        assert binary_layer.prepare_input_batch(7).shape == (7, 2, 6, 6)
        assert binary_layer.prepare_output_batch(7).shape == (7, 3, 4, 4)

    def test_default_batch_size(self):
        layer = make_layer(batch_size=11)
        assert layer.prepare_input_batch().shape[0] == 11
        assert layer.prepare_output_batch().shape[0] == 11

    def test_output_list_independent(self, binary_layer):
        """prepare_output gives N buffers that share no storage."""
        outputs = binary_layer.prepare_output(4)
        assert len(outputs) == 4
        assert len({o.data_ptr() for o in outputs}) == 4
        outputs[0].fill_(1.0)
        assert outputs[1].sum().item() == 0.0

    def test_not_shared_between_calls(self, binary_layer):
        a = binary_layer.prepare_one_output()
        b = binary_layer.prepare_one_output()
        assert a.data_ptr() != b.data_ptr()


class TestBackup:
    """Backup parameters are optional, exclusive copies."""

    def test_absent_until_requested(self, binary_layer):
        assert not binary_layer.has_backup
        binary_layer.backup_parameters()
        assert binary_layer.has_backup

    def test_no_aliasing(self, binary_layer):
        """Changing live parameters does not touch the backup."""
        binary_layer.backup_parameters()
        saved = binary_layer.bak_W.clone()
        with torch.no_grad():
            binary_layer.W.add_(1.0)
            binary_layer.b.add_(1.0)
        assert torch.equal(binary_layer.bak_W, saved)
        assert binary_layer.bak_W.data_ptr() != binary_layer.W.data_ptr()

    def test_restore(self, binary_layer):
        W0 = binary_layer.W.detach().clone()
        c0 = binary_layer.c.detach().clone()
        binary_layer.backup_parameters()
        with torch.no_grad():
            binary_layer.W.mul_(3.0)
            binary_layer.c.fill_(0.7)
        binary_layer.restore_parameters()
        assert torch.equal(binary_layer.W, W0)
        assert torch.equal(binary_layer.c, c0)

    def test_restore_without_backup(self, binary_layer):
        with pytest.raises(ConvRBMError):
            binary_layer.restore_parameters()


class TestSGDContext:
    """The training context is owned by the caller."""

    def test_shapes(self, binary_layer):
        ctx = binary_layer.init_sgd_context(batch_size=5)
        assert isinstance(ctx, SGDContext)
        assert ctx.w_grad.shape == binary_layer.W.shape
        assert ctx.w_inc.shape == binary_layer.W.shape
        assert ctx.b_grad.shape == (3,)
        assert ctx.c_inc.shape == (2,)
        assert ctx.v1.shape == (5, 2, 6, 6)
        assert ctx.h2_s.shape == (5, 3, 4, 4)

    def test_default_batch_size(self):
        layer = make_layer(batch_size=9)
        ctx = layer.init_sgd_context()
        assert ctx.batch_size == 9
        assert ctx.h1_a.shape[0] == 9

    def test_weak_reference(self, binary_layer):
        """The layer does not keep the context alive."""
        ctx = binary_layer.init_sgd_context()
        assert binary_layer.sgd_context is ctx
        del ctx
        gc.collect()
        assert binary_layer.sgd_context is None

    def test_no_context(self, binary_layer):
        assert binary_layer.sgd_context is None
