import json

from paygate.catalog import PayTypeRegistry


def test_builtin_catalog():
    reg = PayTypeRegistry()
    names = [t.name for t in reg.list()]
    assert names == ["alipay", "wxpay", "qqpay", "bank", "jdpay", "paypal", "ecny"]
    assert reg.find("alipay").id == 1
    assert reg.get(7).name == "ecny"
    assert reg.find("nope") is None


def test_catalog_from_file_with_device_restrictions(tmp_path):
    path = tmp_path / "pay_types.json"
    path.write_text(json.dumps({"types": [
        {"id": 1, "name": "alipay", "device": "any", "sort": 2},
        {"id": 2, "name": "wxpay", "device": "mobile", "sort": 1},
        {"id": 3, "name": "bank", "device": "desktop", "sort": 3},
        {"id": 4, "name": "qqpay", "enabled": False, "sort": 4},
    ]}))
    reg = PayTypeRegistry(path=str(path))

    assert [t.name for t in reg.list("mobile")] == ["wxpay", "alipay"]
    assert [t.name for t in reg.list("pc")] == ["alipay", "bank"]
    assert reg.find("wxpay", "pc") is None
    assert reg.find("wxpay", "mobile").id == 2
    assert reg.find("qqpay") is None
