import logging

from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from claims.config import API_HOST, API_PORT, CANCELLED_CLAIM_RETENTION_HOURS
from claims.coordinator import ClaimCoordinator
from domain.errors import ClaimError, ValidationError
from domain.models import OwnerProfile

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "validation": 400,
    "forbidden": 403,
    "penalty_window": 403,
    "not_found": 404,
    "conflict": 409,
    "already_terminal": 409,
    "transient_storage": 503,
}


def _body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _float_arg(name):
    value = request.args.get(name)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        raise ValidationError(f"{name} must be a number")


def create_app(coordinator: ClaimCoordinator = None) -> Flask:
    """Build the JSON API around a coordinator."""
    app = Flask(__name__)
    CORS(app)  # Allow frontend to call API

    coordinator = coordinator or ClaimCoordinator()
    app.config["COORDINATOR"] = coordinator

    @app.errorhandler(ClaimError)
    def handle_claim_error(e):
        status = ERROR_STATUS.get(e.kind, 500)
        return jsonify({'error': e.user_message, 'detail': e.message, 'kind': e.kind}), status

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error on %s", request.path)
        return jsonify({'error': str(e)}), 500

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    # Points

    @app.route('/api/points', methods=['POST'])
    def create_point():
        data = dict(_body())
        owner_id = data.pop('owner_id', None)
        point = coordinator.create_point(owner_id, data)
        return jsonify(point.to_dict()), 201

    @app.route('/api/points', methods=['GET'])
    def list_points():
        owner_id = request.args.get('owner_id')
        if not owner_id:
            raise ValidationError("owner_id is required")
        points = [coordinator.with_status(p) for p in coordinator.list_points_by_owner(owner_id)]
        return jsonify([p.to_dict() for p in points])

    @app.route('/api/points/<point_id>', methods=['DELETE'])
    def delete_point(point_id):
        requester = request.args.get('requester_id') or _body().get('requester_id')
        if not requester:
            raise ValidationError("requester_id is required")
        deleted = coordinator.delete_point(point_id, requester)
        return jsonify({'deleted': deleted})

    @app.route('/api/points/<point_id>/status', methods=['GET'])
    def point_status(point_id):
        return jsonify({'id': point_id, 'status': coordinator.point_status(point_id)})

    # Availability

    @app.route('/api/available', methods=['GET'])
    def available():
        recycler_id = request.args.get('recycler_id')
        results = coordinator.list_available(
            recycler_id,
            lat=_float_arg('lat'),
            lng=_float_arg('lng'),
            max_distance_km=_float_arg('max_distance_km'),
        )
        return jsonify([r.to_dict() for r in results])

    # Claims

    @app.route('/api/claims', methods=['POST'])
    def create_claim():
        data = _body()
        claim = coordinator.claim_point(
            data.get('point_id'), data.get('recycler_id'), data.get('pickup_time')
        )
        return jsonify(claim.to_dict()), 201

    @app.route('/api/claims/<claim_id>/cancel', methods=['POST'])
    def cancel_claim(claim_id):
        data = _body()
        claim = coordinator.cancel_claim(claim_id, data.get('reason'), data.get('recycler_id'))
        return jsonify(claim.to_dict())

    @app.route('/api/claims/<claim_id>/complete', methods=['POST'])
    def complete_claim(claim_id):
        claim = coordinator.complete_claim(claim_id, _body().get('recycler_id'))
        return jsonify(claim.to_dict())

    @app.route('/api/recyclers/<recycler_id>/claims', methods=['GET'])
    def recycler_claims(recycler_id):
        claims = coordinator.claims_for_recycler(recycler_id, request.args.get('status'))
        return jsonify([c.to_dict() for c in claims])

    # Profiles and ratings

    @app.route('/api/profiles', methods=['PUT'])
    def upsert_profile():
        data = _body()
        profile = coordinator.register_profile(OwnerProfile(
            user_id=data.get('user_id'),
            name=data.get('name'),
            email=data.get('email'),
            phone=data.get('phone'),
            avatar_url=data.get('avatar_url'),
            role=data.get('role', 'resident'),
        ))
        return jsonify(profile.to_dict())

    @app.route('/api/ratings', methods=['POST'])
    def rate_recycler():
        data = _body()
        record = coordinator.rate_recycler(
            data.get('claim_id'), data.get('resident_id'), data.get('rating'), data.get('comment', '')
        )
        return jsonify(record.to_dict()), 201

    @app.route('/api/recyclers/<recycler_id>/ratings', methods=['GET'])
    def recycler_ratings(recycler_id):
        return jsonify([r.to_dict() for r in coordinator.ratings.ratings_for(recycler_id)])

    # Feeds, statistics, maintenance

    @app.route('/api/events', methods=['GET'])
    def events():
        since = request.args.get('since', '0')
        if not since.isdigit():
            raise ValidationError("since must be an event id")
        return jsonify(coordinator.events_since(int(since)))

    @app.route('/api/stats', methods=['GET'])
    def stats():
        return jsonify(coordinator.statistics())

    @app.route('/api/stats/monthly', methods=['GET'])
    def monthly_stats():
        months = request.args.get('months', '12')
        if not months.isdigit() or int(months) == 0:
            raise ValidationError("months must be a positive number")
        return jsonify(coordinator.monthly_statistics(request.args.get('user_id'), int(months)))

    @app.route('/api/maintenance/archive-cancelled', methods=['POST'])
    def archive_cancelled():
        hours = _body().get('older_than_hours', CANCELLED_CLAIM_RETENTION_HOURS)
        try:
            hours = float(hours)
        except (TypeError, ValueError):
            raise ValidationError("older_than_hours must be a number")
        return jsonify({'archived': coordinator.archive_cancelled_claims(hours)})

    return app


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    create_app().run(host=API_HOST, port=API_PORT, debug=True)
