from minidrone_comms.sensors import SensorStore, make_token


def test_token_format() -> None:
    assert make_token("common", "CommonState", "BatteryStateChanged") == "common/CommonState/BatteryStateChanged"


def test_update_stores_a_copy(catalog) -> None:
    store = SensorStore()
    battery = catalog.new_command("common", "CommonState", "BatteryStateChanged", {"percent": 80})

    token = store.update(battery)
    battery["percent"] = 10

    assert token == "common/CommonState/BatteryStateChanged"
    assert store.get(token)["percent"] == 80


def test_readers_get_clones(catalog) -> None:
    store = SensorStore()
    store.update(catalog.new_command("common", "CommonState", "BatteryStateChanged", {"percent": 80}))

    first = store.get("common/CommonState/BatteryStateChanged")
    first["percent"] = 1

    assert store.get("common/CommonState/BatteryStateChanged")["percent"] == 80
    assert store.snapshot()["common/CommonState/BatteryStateChanged"]["percent"] == 80


def test_latest_value_wins(catalog) -> None:
    store = SensorStore()
    for percent in (90, 85, 80):
        store.update(
            catalog.new_command("common", "CommonState", "BatteryStateChanged", {"percent": percent}),
            rx_monotonic_s=float(percent),
        )

    reading = store.reading("common/CommonState/BatteryStateChanged")

    assert len(store) == 1
    assert reading.command["percent"] == 80
    assert reading.as_dict()["rx_monotonic_s"] == 80.0
    assert reading.as_dict()["values"] == {"percent": 80}


def test_missing_and_clear(catalog) -> None:
    store = SensorStore()

    assert store.get("minidrone/PilotingState/FlyingStateChanged") is None
    assert store.reading("minidrone/PilotingState/FlyingStateChanged") is None

    store.update(catalog.new_command("minidrone", "PilotingState", "FlyingStateChanged"))
    assert store.tokens() == ["minidrone/PilotingState/FlyingStateChanged"]

    store.clear()
    assert len(store) == 0
