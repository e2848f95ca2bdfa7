# Overview: Pytest coverage for the health endpoint and CORS headers.

from retailcore.services import payment_service


def test_health_reports_missing_gateway_key(client, db_session):
    response = client.get('/api/health')

    assert response.status_code == 200
    body = response.json
    assert body['status'] == 'degraded'
    assert body['checks']['database']['status'] == 'healthy'
    assert 'STRIPE_SECRET_KEY' in body['checks']['payment_gateway']['warning']


def test_health_counts_open_captures(client, db_session, tenant_a):
    payment_service.reconcile_webhook({
        "id": "evt_health",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_health", "amount": 100, "metadata": {"tenant_id": str(tenant_a.id)}}},
    })

    body = client.get('/api/health').json
    assert body['checks']['database']['details']['open_unreconciled_captures'] == 1


def test_cors_allows_configured_origin(client, db_session):
    response = client.get('/api/health', headers={'Origin': 'http://localhost:5173'})
    assert response.headers['Access-Control-Allow-Origin'] == 'http://localhost:5173'

    other = client.get('/api/health', headers={'Origin': 'http://evil.example'})
    assert 'Access-Control-Allow-Origin' not in other.headers
