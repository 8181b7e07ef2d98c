from .responses import ok


def register_stats_routes(app, users):
    @app.route("/stats/users", methods=["GET"])
    def user_stats():
        return ok({"totalUsers": users.count(), "activeUsers": users.count_active()})
