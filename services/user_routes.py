"""Session routes. Signing in starts the session's local reminders, signing out stops them."""


def sign_in(user_id):
    import app as a

    import pytz

    User = a.User
    db = a.db
    jsonify = a.jsonify
    request = a.request
    session = a.session

    user = db.get_or_404(User, user_id)
    data = request.get_json(silent=True) or {}
    timezone_name = (data.get('timezone') or '').strip() or None
    if timezone_name:
        try:
            pytz.timezone(timezone_name)
        except pytz.UnknownTimeZoneError:
            return jsonify({'error': 'Unknown timezone'}), 400

    previous = session.get('user_id')
    if previous and previous != user.id:
        a.local_reminders().sign_out(previous)

    session['user_id'] = user.id
    session.permanent = True
    scheduler = a.local_reminders().sign_in(user.id, timezone_name=timezone_name)
    return jsonify({
        'success': True,
        'username': user.username,
        'user_id': user.id,
        'local_reminders': scheduler.active,
    })


def sign_out():
    import app as a

    jsonify = a.jsonify
    session = a.session

    user_id = session.pop('user_id', None)
    stopped = a.local_reminders().sign_out(user_id) if user_id else False
    return jsonify({'success': True, 'local_reminders_stopped': stopped})


def current_user_info():
    import app as a

    user = a.get_current_user()
    if user:
        return a.jsonify({'user_id': user.id, 'username': user.username})
    return a.jsonify({'user_id': None, 'username': None})
