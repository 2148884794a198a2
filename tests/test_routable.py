"""Tests for the binding operations derived from register."""

import pytest

from forge_express.app import App
from forge_express.interfaces import RegisterMiddleware
from forge_express.middleware import sync_middleware
from forge_express.routable import BindFunctions
from forge_express.router import Router


class RecordingRoutable(BindFunctions):
    """Routable that records what the derived operations register."""

    def __init__(self):
        self.registered = []
        self.params = []

    def register(self, method, path, middlewares):
        self.registered.append((method, path, list(middlewares)))

    def register_param(self, name, middleware):
        self.params.append((name, middleware))


def make_middleware():
    return sync_middleware.from_(lambda next, req, res: next())


@pytest.mark.parametrize("verb", ["get", "post", "put", "patch", "delete", "options"])
def test_verb_bindings(verb):
    """Test that each verb binding registers its method for the path."""
    routable = RecordingRoutable()
    first, second = make_middleware(), make_middleware()

    assert getattr(routable, verb)("/items", first) is routable
    assert getattr(routable, f"{verb}_with_many")("/items/:id", [first, second]) is routable

    assert routable.registered == [
        (verb.upper(), "/items", [first]),
        (verb.upper(), "/items/:id", [first, second]),
    ]


def test_use_bindings():
    """Test the use family of bindings."""
    routable = RecordingRoutable()
    first, second = make_middleware(), make_middleware()

    routable.use(first).use_with_many([first, second])
    routable.use_on_path("/api", first).use_on_path_with_many("/admin", [second])

    assert routable.registered == [
        (None, None, [first]),
        (None, None, [first, second]),
        (None, "/api", [first]),
        (None, "/admin", [second]),
    ]


def test_param_binding():
    """Test that param registers through register_param."""
    routable = RecordingRoutable()
    middleware = make_middleware()
    assert routable.param("id", middleware) is routable
    assert routable.params == [("id", middleware)]


def test_bindings_reject_bad_input():
    """Test validation of the middleware arguments."""
    routable = RecordingRoutable()
    with pytest.raises(ValueError):
        routable.get_with_many("/empty", [])
    with pytest.raises(TypeError):
        routable.get("/raw", lambda next, req, res: next())
    assert routable.registered == []


def test_bindings_are_shared_by_app_and_router():
    """Test that App and Router both get the binding surface from one place."""
    assert issubclass(App, BindFunctions)
    assert issubclass(Router, BindFunctions)
    assert App.get is Router.get
    assert isinstance(Router(), RegisterMiddleware)


def test_router_records_routes():
    """Test the registered route paths of a router."""
    router = Router()
    router.get("/a", make_middleware()).post("/b", make_middleware()).use(make_middleware())
    assert router.routes == ["/a", "/b"]
    assert len(router.layers) == 3


def test_register_requires_primitives():
    """Test that the mixin cannot be used without the primitives."""
    class Incomplete(BindFunctions):
        pass

    with pytest.raises(TypeError):
        Incomplete()
