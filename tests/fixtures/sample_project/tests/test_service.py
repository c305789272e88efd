from app.service import GreetingService


def test_welcome():
    assert GreetingService("x").welcome() == "x"
