from mentalspace import main


def test_health_has_security_headers_and_trace_id(api_client):
    resp = api_client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert resp.status_code == 200
    assert resp.json()['status'] == 'ok'
    assert resp.headers['X-Trace-Id'] == 'abc123'
    assert resp.headers['X-Frame-Options'] == 'DENY'
    assert resp.headers['X-Content-Type-Options'] == 'nosniff'
    assert 'max-age' in resp.headers['Strict-Transport-Security']


def test_metrics_requires_admin(api_client, admin, clinician):
    api_client.get('/health')

    assert api_client.get('/metrics').status_code == 401
    assert api_client.get('/metrics', headers=clinician['headers']).status_code == 403

    resp = api_client.get('/metrics', headers=admin['headers'])
    assert resp.status_code == 200
    assert 'mentalspace_requests_total' in resp.text


def test_metric_paths_are_normalised():
    assert main._normalise_path_for_metrics('/api/notes/42/finalize') == '/api/notes/:param/finalize'
    assert (
        main._normalise_path_for_metrics('/api/clients/3f2b8c1e-1111-4a4a-9c9c-0123456789ab')
        == '/api/clients/:param'
    )
    assert main._normalise_path_for_metrics('/api/auth/login') == '/api/auth/login'
    assert main._normalise_path_for_metrics('') == '/'


def test_unknown_route_uses_error_envelope(api_client):
    resp = api_client.get('/api/does-not-exist')
    assert resp.status_code == 404
    body = resp.json()
    assert body['success'] is False
    assert body['error']['code'] == 404
