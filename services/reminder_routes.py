"""HTTP trigger for the server-side reminder dispatcher."""


def api_dispatch_reminders():
    import app as a

    from reminder_occasions import Channel, Occasion

    app = a.app
    jsonify = a.jsonify
    request = a.request

    api_key = request.args.get('key') or request.headers.get('X-API-Key')
    try:
        raw_occasion = request.args.get('occasion')
        occasion = Occasion.parse(raw_occasion) if raw_occasion else a.default_occasion()
        channels = Channel.parse_many(request.args.getlist('channel') or None)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    try:
        result = a.build_dispatcher().run(api_key, occasion, channels)
    except Exception as exc:
        app.logger.exception("Reminder dispatch crashed")
        return jsonify({'error': str(exc)}), 500

    return jsonify(result.to_dict()), result.status_code
