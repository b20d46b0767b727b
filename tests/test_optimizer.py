import pytest
from fastapi.testclient import TestClient
from dfs_sim.main import app

client = TestClient(app)


def guard_players(count=8):
    return [
        {
            "player_id": i,
            "name": f"Guard {i}",
            "positions": ["G"],
            "salary": 5000 + 500 * i,
            "projection": 20.0 + i,
            "team": "BOS" if i % 2 else "NYK",
            "opponent": "NYK" if i % 2 else "BOS",
        }
        for i in range(1, count + 1)
    ]


def test_health_endpoint():
    """Test the health check endpoint"""
    response = client.get("/api/v2/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "dfs-sim"}


def test_root_endpoint():
    """Test the root endpoint"""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "DFS Sim Service"
    assert data["status"] == "running"
    assert data["version"] == "1.0.0"


def test_optimizer_endpoint_missing_data():
    """Test optimizer endpoint with missing required data"""
    response = client.post("/api/v2/optimize", json={})
    assert response.status_code == 422  # Validation error


def test_optimizer_endpoint_minimal_data():
    """Test optimizer endpoint with minimal valid data"""
    minimal_request = {
        "players": [
            {
                "player_id": 1,
                "name": "Test Player",
                "positions": ["QB"],
                "salary": 5000,
                "projection": 10.5,
                "team": "TEST",
            }
        ],
        "constraints": {
            "salary_cap": 50000,
            "positions": {"QB": 1},
        },
        "num_lineups": 1
    }

    response = client.post("/api/v2/optimize", json=minimal_request)
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ok"
    assert data["num_lineups"] == 1
    assert "execution_time" in data
    assert isinstance(data["lineups"], list)
    assert data["lineups"][0]["players"][0]["player_id"] == 1
    assert data["lineups"][0]["total_salary"] == 5000


def test_optimizer_endpoint_six_guards():
    response = client.post("/api/v2/optimize", json={
        "players": guard_players(),
        "constraints": {"salary_cap": 50000, "positions": {"G": 6}},
        "strategy": "balanced",
        "num_lineups": 1,
    })
    assert response.status_code == 200

    lineup = response.json()["lineups"][0]
    ids = [p["player_id"] for p in lineup["players"]]
    assert len(set(ids)) == 6
    assert lineup["total_salary"] <= 50000


def test_optimizer_endpoint_exposure_report():
    response = client.post("/api/v2/optimize", json={
        "players": guard_players(2),
        "constraints": {
            "salary_cap": 50000,
            "positions": {"G": 1},
            "locked": [1],
            "min_exposure": {"2": 0.3},
        },
        "num_lineups": 10,
    })
    assert response.status_code == 200

    data = response.json()
    assert data["num_lineups"] == 10
    assert data["exposure"]["exposures"]["1"] == 1.0
    assert [v["player_id"] for v in data["exposure"]["violations"]] == [2]


def test_optimizer_endpoint_infeasible():
    response = client.post("/api/v2/optimize", json={
        "players": guard_players(),
        "constraints": {"salary_cap": 30000, "positions": {"G": 6}},
    })
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "infeasible"
    assert data["lineups"] == []
    assert data["reason"]


@pytest.mark.parametrize("constraints, detail", [
    ({"salary_cap": 0, "positions": {"G": 6}}, "salary_cap must be positive"),
    ({"salary_cap": 50000, "positions": {}}, "position requirements are missing"),
    ({"salary_cap": 50000, "positions": {"G": 6}, "locked": [42]}, "locked players not in pool: [42]"),
])
def test_optimizer_endpoint_rejects_bad_constraints(constraints, detail):
    response = client.post("/api/v2/optimize", json={"players": guard_players(), "constraints": constraints})
    assert response.status_code == 422
    assert response.json()["detail"] == detail


def test_optimizer_endpoint_rejects_unknown_strategy():
    response = client.post("/api/v2/optimize", json={
        "players": guard_players(),
        "constraints": {"salary_cap": 50000, "positions": {"G": 6}},
        "strategy": "moonshot",
    })
    assert response.status_code == 422


def test_progress_endpoint_drains_events():
    client.post("/api/v2/optimize", json={
        "players": guard_players(),
        "constraints": {"salary_cap": 50000, "positions": {"G": 6}},
        "num_lineups": 2,
        "strategy": "ceiling",
    })
    response = client.get("/api/v2/progress")
    assert response.status_code == 200
    events = response.json()["events"]
    assert events[-1]["type"] in ("completed", "failed")
    assert client.get("/api/v2/progress").json()["events"] == []
