"""
End-to-end API tests through the Flask test client.
"""

import os

from services.descriptor_store import deserialize_descriptors


def _upload(client, headers, event_id, file_tuple):
    return client.post(f'/api/events/{event_id}/photos', headers=headers,
                       data={'photo': file_tuple}, content_type='multipart/form-data')


def _search(client, headers, event_id, file_tuple):
    return client.post(f'/api/events/{event_id}/face-recognition', headers=headers,
                       data={'selfie': file_tuple}, content_type='multipart/form-data')


def _user_id(client, headers):
    return client.get('/api/auth/me', headers=headers).get_json()['user']['id']


class TestAuth:
    def test_register_and_login(self, client):
        resp = client.post('/api/auth/register', json={
            'username': 'bob', 'email': 'bob@example.com', 'password': 'secret1',
        })
        assert resp.status_code == 201
        assert resp.get_json()['user']['is_admin'] is False

        resp = client.post('/api/auth/login', json={'email': 'bob@example.com', 'password': 'secret1'})
        assert resp.status_code == 200
        assert resp.get_json()['token']

    def test_register_duplicate(self, client, user_headers):
        resp = client.post('/api/auth/register', json={
            'username': 'guest', 'email': 'guest@eventlens.test', 'password': 'guest-pass',
        })
        assert resp.status_code == 409

    def test_register_validation(self, client):
        resp = client.post('/api/auth/register', json={'username': 'x', 'email': 'nope', 'password': '1'})
        assert resp.status_code == 400
        assert len(resp.get_json()['details']) == 3

    def test_login_wrong_password(self, client, admin_headers):
        resp = client.post('/api/auth/login', json={'email': 'admin@eventlens.test', 'password': 'wrong'})
        assert resp.status_code == 401

    def test_login_missing_fields(self, client):
        assert client.post('/api/auth/login', json={}).status_code == 400

    def test_seeded_admin(self, client, admin_headers):
        user = client.get('/api/auth/me', headers=admin_headers).get_json()['user']
        assert user['is_admin'] is True


class TestEvents:
    def test_list_hides_pin(self, client, event):
        events = client.get('/api/events').get_json()['events']
        assert [e['id'] for e in events] == [event['id']]
        assert 'pin' not in events[0]

    def test_get_event(self, client, event):
        assert client.get(f"/api/events/{event['id']}").get_json()['event']['name'] == 'Summer Wedding'
        assert client.get('/api/events/999').status_code == 404

    def test_pin_access(self, client, event):
        ok = client.post('/api/events/access', json={'event_id': event['id'], 'pin': '4321'})
        assert ok.status_code == 200
        bad = client.post('/api/events/access', json={'event_id': event['id'], 'pin': '0000'})
        assert bad.status_code == 403
        missing = client.post('/api/events/access', json={'event_id': 999, 'pin': '4321'})
        assert missing.status_code == 404
        assert client.post('/api/events/access', json={}).status_code == 400

    def test_create_requires_admin(self, client, user_headers):
        body = {'name': 'X', 'date': '2024-01-01', 'pin': '1234'}
        assert client.post('/api/events', json=body).status_code == 401
        assert client.post('/api/events', headers=user_headers, json=body).status_code == 403

    def test_create_validation(self, client, admin_headers):
        resp = client.post('/api/events', headers=admin_headers, json={'name': '', 'date': 'soon', 'pin': '1'})
        assert resp.status_code == 400

    def test_update(self, client, admin_headers, event):
        resp = client.put(f"/api/events/{event['id']}", headers=admin_headers,
                          json={'name': 'Renamed', 'pin': '9999'})
        assert resp.status_code == 200
        assert resp.get_json()['event']['name'] == 'Renamed'
        access = client.post('/api/events/access', json={'event_id': event['id'], 'pin': '9999'})
        assert access.status_code == 200

    def test_delete_removes_photos(self, app, client, admin_headers, event, extractor, face, image_file):
        data = extractor.register(b'p1', [face(1)])
        _upload(client, admin_headers, event['id'], image_file(data))
        assert len(os.listdir(app.config['UPLOAD_DIR'])) == 1

        resp = client.delete(f"/api/events/{event['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/events/{event['id']}").status_code == 404
        assert os.listdir(app.config['UPLOAD_DIR']) == []

    def test_stats(self, client, admin_headers, event):
        stats = client.get('/api/events/stats', headers=admin_headers).get_json()
        assert stats['total_events'] == 1
        assert stats['recognition']['recognitions'] == 0

    def test_mixed_timezone_dates_list_in_order(self, client, admin_headers, event):
        for name, date in [('Brunch', '2024-07-01T10:00:00+02:00'),
                           ('Gala', '2024-06-01T18:00:00Z')]:
            resp = client.post('/api/events', headers=admin_headers,
                               json={'name': name, 'date': date, 'pin': '1234'})
            assert resp.status_code == 201

        resp = client.get('/api/events')
        assert resp.status_code == 200
        events = resp.get_json()['events']
        assert [e['name'] for e in events] == ['Brunch', 'Gala', 'Summer Wedding']
        # stored as naive UTC
        assert events[0]['date'] == '2024-07-01T08:00:00'
        assert events[1]['date'] == '2024-06-01T18:00:00'


class TestPhotoUpload:
    def test_one_face_is_stored(self, client, store, admin_headers, event, extractor, face, image_file):
        data = extractor.register(b'portrait', [face(1)])
        resp = _upload(client, admin_headers, event['id'], image_file(data))

        assert resp.status_code == 201
        photo = resp.get_json()['photo']
        assert photo['face_count'] == 1
        assert 'face_data' not in photo
        descriptors = deserialize_descriptors(store.get_photo(photo['id'])['face_data'])
        assert len(descriptors) == 1

    def test_zero_faces_still_created(self, client, store, admin_headers, event, extractor, image_file):
        data = extractor.register(b'landscape', [])
        resp = _upload(client, admin_headers, event['id'], image_file(data, 'view.png', 'image/png'))

        assert resp.status_code == 201
        photo_id = resp.get_json()['photo']['id']
        assert store.get_photo(photo_id)['face_data'] is None

    def test_extraction_failure_still_created(self, client, store, admin_headers, event, image_file):
        resp = _upload(client, admin_headers, event['id'], image_file(b'unknown bytes'))
        assert resp.status_code == 201
        assert store.get_photo(resp.get_json()['photo']['id'])['face_data'] is None

    def test_stored_file_is_served(self, client, admin_headers, event, extractor, image_file):
        data = extractor.register(b'portrait', [])
        url = _upload(client, admin_headers, event['id'], image_file(data)).get_json()['photo']['url']
        served = client.get(url)
        assert served.status_code == 200
        assert served.data == b'portrait'

    def test_listing(self, client, admin_headers, event, extractor, face, image_file):
        _upload(client, admin_headers, event['id'], image_file(extractor.register(b'a', [face(1), face(2)])))
        _upload(client, admin_headers, event['id'], image_file(extractor.register(b'b', [])))
        photos = client.get(f"/api/events/{event['id']}/photos").get_json()['photos']
        assert [p['face_count'] for p in photos] == [2, 0]

    def test_requires_admin(self, client, user_headers, event, image_file):
        resp = _upload(client, user_headers, event['id'], image_file(b'a'))
        assert resp.status_code == 403

    def test_missing_file(self, client, admin_headers, event):
        resp = client.post(f"/api/events/{event['id']}/photos", headers=admin_headers,
                           data={}, content_type='multipart/form-data')
        assert resp.status_code == 400

    def test_wrong_type(self, client, admin_headers, event, image_file):
        resp = _upload(client, admin_headers, event['id'], image_file(b'GIF89a', 'anim.gif', 'image/gif'))
        assert resp.status_code == 400

    def test_too_large(self, client, admin_headers, event, image_file):
        big = b'x' * (5 * 1024 * 1024 + 10)
        resp = _upload(client, admin_headers, event['id'], image_file(big))
        assert resp.status_code == 413

    def test_unknown_event(self, client, admin_headers, image_file):
        assert _upload(client, admin_headers, 999, image_file(b'a')).status_code == 404

    def test_delete_photo(self, app, client, admin_headers, event, extractor, image_file):
        data = extractor.register(b'portrait', [])
        photo_id = _upload(client, admin_headers, event['id'], image_file(data)).get_json()['photo']['id']

        assert client.delete(f'/api/photos/{photo_id}', headers=admin_headers).status_code == 200
        assert os.listdir(app.config['UPLOAD_DIR']) == []
        assert client.delete(f'/api/photos/{photo_id}', headers=admin_headers).status_code == 404


class TestFaceRecognition:
    def _seed_gallery(self, client, admin_headers, event, extractor, face, image_file):
        """Five photos; the guest (identity 1) is in the second and fourth."""
        layout = [[2], [1, 3], [4], [1], []]
        ids = []
        for i, identities in enumerate(layout):
            data = extractor.register(f'gallery-{i}'.encode(), [face(p, 0.2) for p in identities])
            resp = _upload(client, admin_headers, event['id'], image_file(data))
            ids.append(resp.get_json()['photo']['id'])
        return ids

    def test_two_of_five_match(self, client, store, admin_headers, user_headers, event,
                               extractor, face, image_file):
        ids = self._seed_gallery(client, admin_headers, event, extractor, face, image_file)
        selfie = extractor.register(b'selfie', [face(1)])

        resp = _search(client, user_headers, event['id'], image_file(selfie, 'me.jpg'))

        assert resp.status_code == 200
        body = resp.get_json()
        assert body['totalPhotos'] == 5
        assert body['matchingPhotos'] == 2
        assert [p['id'] for p in body['photos']] == [ids[1], ids[3]]
        assert body['message']

        history = store.get_photo_history(_user_id(client, user_headers))
        assert sorted(h['photo_id'] for h in history) == [ids[1], ids[3]]

    def test_repeat_search_duplicates_history(self, client, store, admin_headers, user_headers,
                                              event, extractor, face, image_file):
        self._seed_gallery(client, admin_headers, event, extractor, face, image_file)
        selfie = extractor.register(b'selfie', [face(1)])

        first = _search(client, user_headers, event['id'], image_file(selfie)).get_json()
        second = _search(client, user_headers, event['id'], image_file(selfie)).get_json()

        assert first['photos'] == second['photos']
        assert len(store.get_photo_history(_user_id(client, user_headers))) == 4

    def test_no_face_in_selfie(self, client, store, admin_headers, user_headers, event,
                               extractor, face, image_file):
        self._seed_gallery(client, admin_headers, event, extractor, face, image_file)
        selfie = extractor.register(b'blank wall', [])

        resp = _search(client, user_headers, event['id'], image_file(selfie))

        assert resp.status_code == 400
        assert resp.get_json()['error'] == 'No face detected in the selfie'
        assert store.get_photo_history(_user_id(client, user_headers)) == []

    def test_unreadable_selfie(self, client, user_headers, event, image_file):
        resp = _search(client, user_headers, event['id'], image_file(b'corrupt'))
        assert resp.status_code == 400

    def test_model_unavailable(self, client, user_headers, event, extractor, image_file):
        from engines.face_matching import ModelLoadError
        extractor.error = ModelLoadError('offline')
        resp = _search(client, user_headers, event['id'], image_file(b'selfie'))
        assert resp.status_code == 503

    def test_temp_files_removed(self, app, client, user_headers, event, extractor, face, image_file):
        ok = extractor.register(b'selfie', [face(1)])
        _search(client, user_headers, event['id'], image_file(ok))
        _search(client, user_headers, event['id'], image_file(b'corrupt'))
        assert os.listdir(app.config['TMP_DIR']) == []

    def test_requires_login(self, client, event, image_file):
        assert _search(client, {}, event['id'], image_file(b'selfie')).status_code == 401

    def test_missing_selfie(self, client, user_headers, event):
        resp = client.post(f"/api/events/{event['id']}/face-recognition", headers=user_headers,
                           data={}, content_type='multipart/form-data')
        assert resp.status_code == 400

    def test_unknown_event(self, client, user_headers, image_file):
        assert _search(client, user_headers, 999, image_file(b'selfie')).status_code == 404

    def test_photo_history(self, client, admin_headers, user_headers, event,
                           extractor, face, image_file):
        ids = self._seed_gallery(client, admin_headers, event, extractor, face, image_file)
        _search(client, user_headers, event['id'], image_file(extractor.register(b'selfie', [face(1)])))

        resp = client.get('/api/user/photo-history', headers=user_headers)
        assert resp.status_code == 200
        photos = resp.get_json()['photos']
        assert sorted(p['id'] for p in photos) == [ids[1], ids[3]]
        assert all(p['event']['name'] == 'Summer Wedding' for p in photos)
        assert all(p['viewed_at'] for p in photos)


class TestHealth:
    def test_health(self, client):
        body = client.get('/health').get_json()
        assert body['status'] == 'healthy'
        assert body['face_model'] == 'loaded'

    def test_unknown_route_is_json(self, client):
        resp = client.get('/api/nope')
        assert resp.status_code == 404
        assert resp.get_json() == {'error': 'Not found'}
