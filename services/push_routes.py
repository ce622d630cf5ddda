"""Delivery endpoint registration routes (push subscriptions and email addresses)."""

import json
import re

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def api_vapid_public_key():
    import app as a

    key = a.app.config.get('VAPID_PUBLIC_KEY')
    if not key:
        return a.jsonify({'error': 'Push not configured'}), 404
    return a.jsonify({'publicKey': key})


def api_push_subscribe():
    import app as a

    from models import CHANNEL_PUSH, DeliveryEndpoint

    app = a.app
    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    data = request.get_json(silent=True) or {}
    sub = data.get('subscription') or {}
    endpoint = sub.get('endpoint')
    keys = sub.get('keys') or {}
    p256dh = keys.get('p256dh')
    auth = keys.get('auth')
    if not endpoint or not p256dh or not auth:
        app.logger.warning("Push subscribe missing fields: endpoint=%s p256dh=%s auth=%s", bool(endpoint), bool(p256dh), bool(auth))
        return jsonify({'error': 'Invalid subscription'}), 400
    app.logger.info("Push subscribe for user %s endpoint %s", user.id, endpoint)

    # One canonical push endpoint per user: upsert keyed by user.
    payload = json.dumps({'endpoint': endpoint, 'keys': {'p256dh': p256dh, 'auth': auth}})
    record = DeliveryEndpoint.query.filter_by(user_id=user.id, channel=CHANNEL_PUSH).first()
    if record:
        record.payload = payload
        DeliveryEndpoint.query.filter(
            DeliveryEndpoint.user_id == user.id,
            DeliveryEndpoint.channel == CHANNEL_PUSH,
            DeliveryEndpoint.id != record.id,
        ).delete()
    else:
        record = DeliveryEndpoint(user_id=user.id, channel=CHANNEL_PUSH, payload=payload)
        db.session.add(record)
    db.session.commit()
    return jsonify({'status': 'subscribed', 'endpoint': record.to_dict()})


def api_push_unsubscribe():
    import app as a

    from models import CHANNEL_PUSH, DeliveryEndpoint

    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    data = request.get_json(silent=True) or {}
    endpoint = data.get('endpoint')
    subs = DeliveryEndpoint.query.filter_by(user_id=user.id, channel=CHANNEL_PUSH).all()
    deleted = 0
    for sub in subs:
        info = sub.subscription_info() or {}
        if not endpoint or info.get('endpoint') == endpoint:
            db.session.delete(sub)
            deleted += 1
    db.session.commit()
    return jsonify({'status': 'unsubscribed', 'deleted': deleted})


def api_push_list():
    import app as a

    from models import DeliveryEndpoint

    get_current_user = a.get_current_user
    jsonify = a.jsonify

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    subs = DeliveryEndpoint.query.filter_by(user_id=user.id).order_by(DeliveryEndpoint.id.asc()).all()
    return jsonify([s.to_dict() for s in subs])


def api_email_subscribe():
    import app as a

    from models import CHANNEL_EMAIL, DeliveryEndpoint

    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or user.email or '').strip().lower()
    if not EMAIL_PATTERN.match(email):
        return jsonify({'error': 'Valid email required'}), 400
    record = DeliveryEndpoint.query.filter_by(user_id=user.id, channel=CHANNEL_EMAIL, payload=email).first()
    if not record:
        record = DeliveryEndpoint(user_id=user.id, channel=CHANNEL_EMAIL, payload=email)
        db.session.add(record)
        db.session.commit()
    return jsonify({'status': 'subscribed', 'endpoint': record.to_dict()})


def api_email_unsubscribe():
    import app as a

    from models import CHANNEL_EMAIL, DeliveryEndpoint

    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    data = request.get_json(silent=True) or {}
    query = DeliveryEndpoint.query.filter_by(user_id=user.id, channel=CHANNEL_EMAIL)
    email = (data.get('email') or '').strip().lower()
    if email:
        query = query.filter_by(payload=email)
    deleted = query.delete()
    db.session.commit()
    return jsonify({'status': 'unsubscribed', 'deleted': deleted})
