CONFIG = {
    "model": {
        "visible_unit": "binary",
        "hidden_unit": "binary",
        "nc": 1,
        "nv1": 28,
        "nv2": 28,
        "k": 16,
        "nh1": 20,
        "nh2": 20,
        "batch_size": 25,
    },
    "device": "auto",
    "seed": 42,
    "gibbs": {
        "steps": 10,
        "batch_size": 8,
    },
}
