"""
Dashboard aggregation tests — pure folds and the summary endpoint.
"""

from crm.services import dashboard_service as ds


OPPS = [
    {"id": "1", "name": "A", "stage": "prospecting", "status": "prospect", "revenue": 1000, "profitability": 10},
    {"id": "2", "name": "B", "stage": "closed_won", "status": "commit", "revenue": 3000, "profitability": 20},
    {"id": "3", "name": "C", "stage": "closed_lost", "status": "upside", "revenue": 500, "expectedProfit": 5},
    {"id": "4", "name": "D", "stage": "closed_won", "status": "commit", "revenue": "bad"},
]


class TestFolds:
    def test_empty_input_yields_zeros(self):
        summary = ds.build_summary([], [])
        pipeline = summary["pipeline"]
        assert pipeline["totalOpportunities"] == 0
        assert pipeline["totalRevenue"] == 0
        assert pipeline["winRate"] == 0.0
        assert pipeline["averageDealSize"] == 0.0
        assert summary["opportunitiesByStage"] == []
        assert summary["contacts"]["totalContacts"] == 0
        assert summary["contacts"]["byStatus"] == []

    def test_pipeline_totals(self):
        pipeline = ds.summarize_pipeline(OPPS)
        assert pipeline["totalOpportunities"] == 4
        assert pipeline["openOpportunities"] == 1
        assert pipeline["totalRevenue"] == 4500
        assert pipeline["openPipelineValue"] == 1000
        assert pipeline["closedWonRevenue"] == 3000
        # 100 + 600 + 5 + 0
        assert pipeline["totalExpectedProfit"] == 705
        assert pipeline["closedWonCount"] == 2
        assert pipeline["closedLostCount"] == 1
        assert pipeline["winRate"] == 66.7
        assert pipeline["averageDealSize"] == 1125

    def test_by_stage_in_pipeline_order(self):
        stages = ds.group_opportunities_by_stage(OPPS + [{"stage": "custom", "revenue": 1}])
        assert [s["stage"] for s in stages] == ["prospecting", "closed_won", "closed_lost", "custom"]
        won = stages[1]
        assert won["count"] == 2
        assert won["value"] == 3000
        assert won["percentage"] == 40.0

    def test_by_status(self):
        statuses = {s["status"]: s for s in ds.group_opportunities_by_status(OPPS)}
        assert statuses["commit"]["count"] == 2
        assert statuses["commit"]["percentage"] == 50.0
        assert statuses["upside"]["expectedProfit"] == 5

    def test_contacts_by_status_and_recent(self):
        contacts = [
            {"id": str(i), "firstName": f"C{i}", "status": "active" if i % 3 else "customer",
             "updatedAt": f"2024-01-0{i}T00:00:00"}
            for i in range(1, 8)
        ]
        folded = ds.group_contacts_by_status(contacts)
        assert folded["totalContacts"] == 7
        counts = {s["status"]: (s["count"], s["percentage"]) for s in folded["byStatus"]}
        assert counts == {"active": (5, 71.4), "customer": (2, 28.6)}
        assert [c["id"] for c in folded["recentContacts"]] == ["7", "6", "5", "4", "3"]


class TestSummaryEndpoint:
    def test_summary_over_tenant_data(self, client, auth_headers):
        for payload in (
            {"name": "Deal 1", "stage": "proposal", "revenue": 2000, "profitability": 25},
            {"name": "Deal 2", "stage": "closed_won", "revenue": 1000},
        ):
            assert client.post("/api/v1/opportunities", json=payload, headers=auth_headers).status_code == 201
        client.post("/api/v1/contacts", json={"firstName": "Peter", "status": "prospect"}, headers=auth_headers)

        res = client.get("/api/v1/dashboard/summary", headers=auth_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["pipeline"]["totalRevenue"] == 3000
        assert body["pipeline"]["totalExpectedProfit"] == 500
        assert body["pipeline"]["winRate"] == 100.0
        assert body["contacts"]["totalContacts"] == 1
        assert body["contacts"]["byStatus"][0]["status"] == "prospect"

    def test_requires_read_permission(self, client, headers_for, tenant):
        res = client.get("/api/v1/dashboard/summary", headers=headers_for("user-x", permissions=[]))
        assert res.status_code == 403
