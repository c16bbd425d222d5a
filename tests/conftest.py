import pytest
import torch

from convrbm import ConvRBM


def make_layer(visible="binary", hidden="binary", shape=(1, 4, 4, 2, 3, 3), **extra):
    nc, nv1, nv2, k, nh1, nh2 = shape
    cfg = {
        "visible_unit": visible,
        "hidden_unit": hidden,
        "nc": nc, "nv1": nv1, "nv2": nv2, "k": k, "nh1": nh1, "nh2": nh2,
    }
    cfg.update(extra)
    return ConvRBM({"model": cfg})


@pytest.fixture(autouse=True)
def seed():
    torch.manual_seed(1234)


@pytest.fixture
def binary_layer():
    """BINARY/BINARY layer: nc=2, 6x6 visible, 3 filters, 4x4 hidden."""
    return make_layer(shape=(2, 6, 6, 3, 4, 4))


@pytest.fixture
def gaussian_layer():
    """GAUSSIAN visible, BINARY hidden."""
    return make_layer(visible="gaussian", shape=(2, 6, 6, 3, 4, 4))
