"""
实时追踪接口测试
测试生命周期控制、传感器数据上报、实时指标与保存失败后的重试
"""

import pytest
from fastapi import status

from runtracker.activities.crud import ActivityRepository
from runtracker.core.errors import PersistenceFailure


class TestTrackerLifecycle:
    """生命周期控制测试"""

    def test_initial_state_is_idle(self, client):
        response = client.get("/tracker/state")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["state"] == "idle"
        assert data["activity_id"] is None

    def test_pause_in_idle_conflicts(self, client):
        """测试空闲状态下暂停返回 409"""
        response = client.post("/tracker/pause")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert client.get("/tracker/state").json()["state"] == "idle"

    def test_start_twice_conflicts(self, client):
        assert client.post("/tracker/start").status_code == status.HTTP_200_OK
        assert client.post("/tracker/start").status_code == status.HTTP_409_CONFLICT

    def test_full_lifecycle(self, client):
        """测试开始 -> 暂停 -> 恢复 -> 结束"""
        start = client.post("/tracker/start")
        assert start.status_code == status.HTTP_200_OK
        activity_id = start.json()["id"]
        assert start.json()["status"] == "in_progress"

        assert client.post("/tracker/pause").json()["status"] == "paused"
        assert client.get("/tracker/state").json()["state"] == "paused"
        assert client.post("/tracker/resume").json()["status"] == "in_progress"

        stop = client.post("/tracker/stop")
        assert stop.status_code == status.HTTP_200_OK
        data = stop.json()
        assert data["id"] == activity_id
        assert data["status"] == "completed"
        assert data["end_time"] is not None
        assert client.get("/tracker/state").json()["state"] == "completed"

        listed = client.get("/activities").json()
        assert [a["id"] for a in listed] == [activity_id]

    def test_discard(self, client):
        activity_id = client.post("/tracker/start").json()["id"]
        response = client.post("/tracker/discard")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["state"] == "idle"
        assert client.get(f"/activities/{activity_id}").status_code == status.HTTP_404_NOT_FOUND
        assert client.post("/tracker/discard").status_code == status.HTTP_409_CONFLICT

    def test_failed_discard_can_be_retried(self, client, monkeypatch):
        """删除失败时活动保持进行中，可以再次放弃"""
        activity_id = client.post("/tracker/start").json()["id"]
        original_delete = ActivityRepository.delete

        def broken(self, target):
            raise PersistenceFailure("database is locked", activity_id=target)

        monkeypatch.setattr(ActivityRepository, "delete", broken)
        assert client.post("/tracker/discard").status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        state = client.get("/tracker/state").json()
        assert state["state"] == "tracking"
        assert state["activity_id"] == activity_id

        monkeypatch.setattr(ActivityRepository, "delete", original_delete)
        assert client.post("/tracker/discard").json()["state"] == "idle"
        assert client.get(f"/activities/{activity_id}").status_code == status.HTTP_404_NOT_FOUND


class TestSensorIngestion:
    """传感器数据上报测试"""

    def test_reading_while_idle_is_not_tracked(self, client):
        response = client.post("/tracker/readings", json={"heart_rate": 140, "source": "heart_rate_monitor"})
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"result": "not_tracking", "state": "idle"}

    def test_heart_rate_averages(self, client):
        """测试 [140, 150, 0] -> 平均 145，最大 150"""
        client.post("/tracker/start")
        for hr in (140, 150, 0):
            response = client.post("/tracker/readings", json={"heart_rate": hr, "source": "heart_rate_monitor"})
            assert response.json()["result"] == "accepted"

        live = client.get("/tracker/live").json()
        assert live["state"] == "tracking"
        assert live["heart_rate"] == 150
        assert live["average_heart_rate"] == 145

        data = client.post("/tracker/stop").json()
        assert data["average_heart_rate"] == 145
        assert data["max_heart_rate"] == 150
        assert data["average_cadence"] is None

        readings = client.get(f"/activities/{data['id']}/readings").json()
        assert [r["heart_rate"] for r in readings] == [140, 150, 0]

    def test_negative_heart_rate_is_rejected(self, client):
        client.post("/tracker/start")
        response = client.post("/tracker/readings", json={"heart_rate": -1, "source": "heart_rate_monitor"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert client.get("/tracker/state").json()["state"] == "tracking"

    def test_gps_fixes_build_route(self, client):
        client.post("/tracker/start")
        fixes = [
            {"latitude": 31.0, "longitude": 121.0, "altitude": 10.0, "timestamp": "2024-05-01T07:30:00Z"},
            {"latitude": 31.0001, "longitude": 121.0, "altitude": 20.0, "timestamp": "2024-05-01T07:30:04Z"},
        ]
        for fix in fixes:
            assert client.post("/tracker/gps", json=fix).json()["result"] == "accepted"
        live = client.get("/tracker/live").json()
        assert 11.0 < live["distance_meters"] < 11.3
        # 海拔经低通滤波：0.1 * 20 + 0.9 * 10 = 11
        assert live["elevation_gain_meters"] == pytest.approx(1.0)

        data = client.post("/tracker/stop").json()
        assert len(data["route_points"]) == 2
        assert data["route_points"][1]["altitude"] == 20.0

    def test_out_of_range_gps_is_rejected(self, client):
        client.post("/tracker/start")
        response = client.post("/tracker/gps", json={"latitude": 91.0, "longitude": 0.0})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestPersistenceFailure:
    """保存失败与重试测试"""

    def test_stop_failure_returns_503_and_retry_succeeds(self, client, monkeypatch):
        activity_id = client.post("/tracker/start").json()["id"]
        client.post("/tracker/readings", json={"heart_rate": 155, "source": "heart_rate_monitor"})

        original_save = ActivityRepository.save

        def broken(self, record):
            raise PersistenceFailure("database is locked", activity_id=record.id)

        monkeypatch.setattr(ActivityRepository, "save", broken)
        response = client.post("/tracker/stop")
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        state = client.get("/tracker/state").json()
        assert state["state"] == "completed"
        assert state["unsaved_activity_id"] == activity_id

        monkeypatch.setattr(ActivityRepository, "save", original_save)
        retry = client.post("/tracker/retry-save")
        assert retry.status_code == status.HTTP_200_OK
        assert retry.json()["average_heart_rate"] == 155

        stored = client.get(f"/activities/{activity_id}").json()
        assert stored["status"] == "completed"
        assert client.get("/tracker/state").json()["unsaved_activity_id"] is None

    def test_retry_without_unsaved_record_conflicts(self, client):
        assert client.post("/tracker/retry-save").status_code == status.HTTP_409_CONFLICT

    def test_unsaved_record_survives_next_activity(self, client, monkeypatch):
        """保存失败的记录在下一次活动结束后仍可重试"""
        first_id = client.post("/tracker/start").json()["id"]
        client.post("/tracker/readings", json={"heart_rate": 150, "source": "heart_rate_monitor"})
        original_save = ActivityRepository.save

        def broken(self, record):
            raise PersistenceFailure("database is locked", activity_id=record.id)

        monkeypatch.setattr(ActivityRepository, "save", broken)
        assert client.post("/tracker/stop").status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        monkeypatch.setattr(ActivityRepository, "save", original_save)

        second_id = client.post("/tracker/start").json()["id"]
        assert client.post("/tracker/stop").status_code == status.HTTP_200_OK
        state = client.get("/tracker/state").json()
        assert state["unsaved_activity_ids"] == [first_id]

        retry = client.post("/tracker/retry-save", params={"activity_id": first_id})
        assert retry.status_code == status.HTTP_200_OK
        assert retry.json()["average_heart_rate"] == 150
        assert client.get(f"/activities/{first_id}").json()["status"] == "completed"
        assert client.get(f"/activities/{second_id}").status_code == status.HTTP_200_OK
        assert client.get("/tracker/state").json()["unsaved_activity_ids"] == []
