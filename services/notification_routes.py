"""Local notification routes: permission, the session's schedule and the in-app inbox."""


def api_list_notifications():
    import app as a

    from models import Notification

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    try:
        limit = min(int(request.args.get('limit', 50)), 200)
    except (TypeError, ValueError):
        limit = 50
    items = Notification.query.filter_by(user_id=user.id).order_by(
        Notification.created_at.desc(),
        Notification.id.desc(),
    ).limit(limit).all()
    return jsonify([n.to_dict() for n in items])


def api_mark_notification_read(notification_id):
    import app as a

    import pytz

    from models import Notification

    datetime = a.datetime
    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    notif = Notification.query.filter_by(id=notification_id, user_id=user.id).first()
    if not notif:
        return jsonify({'error': 'Not found'}), 404
    notif.read_at = datetime.now(pytz.UTC).replace(tzinfo=None)
    db.session.commit()
    return jsonify(notif.to_dict())


def api_notification_permission():
    import app as a

    from backend.in_app_notifier import get_or_create_notification_settings
    from models import PERMISSION_GRANTED, PERMISSION_STATES

    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    prefs = get_or_create_notification_settings(user.id)
    if request.method == 'GET':
        return jsonify(prefs.to_dict())

    data = request.get_json(silent=True) or {}
    permission = str(data.get('permission') or '').strip().lower()
    if permission not in PERMISSION_STATES:
        return jsonify({'error': 'Invalid permission'}), 400
    prefs.permission = permission
    db.session.commit()

    registry = a.local_reminders()
    if permission == PERMISSION_GRANTED:
        current = registry.get(user.id)
        timezone_name = current.timezone_name if current else None
        registry.sign_in(user.id, timezone_name=timezone_name)
    else:
        registry.sign_out(user.id)
    return jsonify(prefs.to_dict())


def api_local_schedule():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    scheduler = a.local_reminders().get(user.id)
    armed = scheduler.armed() if scheduler else {}
    return jsonify({
        'active': bool(scheduler and scheduler.active),
        'timezone': scheduler.timezone_name if scheduler else None,
        'armed': {occasion.value: fire_at.isoformat() for occasion, fire_at in armed.items()},
    })
