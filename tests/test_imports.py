import importlib


def test_import_package():
    pkg = importlib.import_module("pydownscale")
    assert hasattr(pkg, "__version__")


def test_public_entry_points():
    pkg = importlib.import_module("pydownscale")
    for name in ("downscale_train", "downscale_predict", "fit_site", "PreparedGrid"):
        assert name in pkg.__all__
        assert hasattr(pkg, name)
    assert pkg.available_methods() == ["analogs", "GLM", "NN"]
