"""
Unit tests for jj_client.client module.

Tests the mapping of client methods to Jenkins endpoints and the
translation of HTTP failures into JenkinsError.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from jj_client.client import JenkinsClient, JenkinsError, JobNotFoundError, job_path
from jj_client.config import ServerConfig


def make_response(json_data=None, headers=None, text="", status=200):
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.text = text
    response.json.return_value = json_data
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status} error", response=response
        )
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    config = ServerConfig("default", "http://jenkins", user="alice", token="t1")
    return JenkinsClient(config, session=session)


def called_url(session, index=-1) -> str:
    return session.request.call_args_list[index].args[1]


class TestJobPath:
    """Test suite for job_path function."""

    def test_plain_job(self):
        assert job_path("deploy-api") == "job/deploy-api"

    def test_folder_job(self):
        """Test that folders become nested job segments."""
        assert job_path("team/deploy api") == "job/team/job/deploy%20api"


class TestJenkinsClientJobs:
    """Test suite for job lookups."""

    def test_uses_basic_auth(self, client, session):
        """Test that user and token are attached to the session."""
        assert session.auth == ("alice", "t1")

    def test_list_job_names_merges_views(self, client, session):
        """Test that jobs from views are merged and sorted."""
        session.request.return_value = make_response(
            {
                "jobs": [{"name": "b-job"}, {"name": "a-job"}],
                "views": [{"name": "all", "jobs": [{"name": "a-job"}, {"name": "c-job"}]}],
            }
        )

        assert client.list_job_names() == ["a-job", "b-job", "c-job"]
        assert called_url(session) == "http://jenkins/api/json"

    def test_find_matching_jobs_is_case_insensitive(self, client, session):
        """Test that job matching ignores case."""
        session.request.return_value = make_response(
            {"jobs": [{"name": "Deploy-API"}, {"name": "deploy-web"}, {"name": "lint"}]}
        )

        assert client.find_matching_jobs("DEPLOY") == ["Deploy-API", "deploy-web"]

    def test_get_job_info(self, client, session):
        """Test that job metadata is read from the job endpoint."""
        session.request.return_value = make_response(
            {"name": "deploy-api", "lastBuild": {"number": 4}}
        )

        info = client.get_job_info("deploy-api")

        assert info.last_build_number == 4
        assert called_url(session) == "http://jenkins/job/deploy-api/api/json"

    def test_get_job_info_not_found(self, client, session):
        """Test that a 404 on job metadata raises JobNotFoundError."""
        session.request.return_value = make_response(status=404)

        with pytest.raises(JobNotFoundError, match="job 'ghost' does not exist"):
            client.get_job_info("ghost")

    def test_get_job_info_server_error(self, client, session):
        """Test that other HTTP errors raise a plain JenkinsError."""
        session.request.return_value = make_response(status=500)

        with pytest.raises(JenkinsError) as exc_info:
            client.get_job_info("deploy-api")
        assert not isinstance(exc_info.value, JobNotFoundError)

    def test_network_error_raises_jenkins_error(self, client, session):
        """Test that connection failures are wrapped."""
        session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(JenkinsError, match="refused"):
            client.list_job_names()

    def test_last_successful_duration(self, client, session):
        """Test that the reference duration comes from the last successful build."""
        session.request.return_value = make_response({"duration": 90000})

        assert client.get_last_successful_duration("deploy-api") == 90000
        assert called_url(session).endswith("job/deploy-api/lastSuccessfulBuild/api/json")

    def test_last_successful_duration_missing(self, client, session):
        """Test that a job without successful builds has no reference."""
        session.request.return_value = make_response(status=404)

        assert client.get_last_successful_duration("deploy-api") == 0


class TestJenkinsClientConsole:
    """Test suite for console fetching."""

    def test_fetch_console_advances_cursor(self, client, session):
        """Test that the next cursor comes from X-Text-Size."""
        session.request.return_value = make_response(
            headers={"X-Text-Size": "120"}, text="<b>hello</b>\n"
        )

        raw, cursor = client.fetch_console("deploy-api", 7, "0")

        assert raw == "<b>hello</b>\n"
        assert cursor == "120"
        call = session.request.call_args
        assert call.args[1] == "http://jenkins/job/deploy-api/7/logText/progressiveHtml"
        assert call.kwargs["params"] == {"start": "0"}

    def test_fetch_console_without_new_data(self, client, session):
        """Test that an unchanged cursor returns no text."""
        session.request.return_value = make_response(
            headers={"X-Text-Size": "120"}, text="stale"
        )

        assert client.fetch_console("deploy-api", 7, "120") == ("", "120")

    def test_fetch_console_error(self, client, session):
        """Test that a failed fetch raises JenkinsError."""
        session.request.return_value = make_response(status=503)

        with pytest.raises(JenkinsError):
            client.fetch_console("deploy-api", 7, "0")

    def test_console_url(self, client):
        assert client.console_url("deploy-api", 7) == "http://jenkins/job/deploy-api/7/console"


class TestJenkinsClientActions:
    """Test suite for trigger and cancel requests."""

    def route(self, session, responses):
        def request(method, url, **kwargs):
            for (m, suffix), response in responses.items():
                if m == method and url.endswith(suffix):
                    return response
            return make_response(status=404)

        session.request.side_effect = request

    def test_trigger_without_parameters(self, client, session):
        """Test that a plain build returns the queue id from Location."""
        self.route(
            session,
            {
                ("GET", "crumbIssuer/api/json"): make_response(
                    {"crumbRequestField": "Jenkins-Crumb", "crumb": "abc"}
                ),
                ("POST", "job/deploy-api/build"): make_response(
                    status=201, headers={"Location": "http://jenkins/queue/item/77/"}
                ),
            },
        )

        assert client.trigger_build("deploy-api", {}) == 77
        post = session.request.call_args
        assert post.kwargs["headers"] == {"Jenkins-Crumb": "abc"}
        assert post.kwargs["allow_redirects"] is False

    def test_trigger_with_parameters(self, client, session):
        """Test that parameters use buildWithParameters."""
        self.route(
            session,
            {
                ("POST", "job/deploy-api/buildWithParameters"): make_response(
                    status=201, headers={"Location": "/queue/item/78/"}
                ),
            },
        )

        assert client.trigger_build("deploy-api", {"BRANCH": "main"}) == 78
        post = session.request.call_args
        assert post.kwargs["params"] == {"BRANCH": "main"}
        assert post.kwargs["headers"] == {}

    def test_trigger_without_location_fails(self, client, session):
        """Test that a missing queue location is an error."""
        self.route(session, {("POST", "job/deploy-api/build"): make_response(status=201)})

        with pytest.raises(JenkinsError, match="no queue location"):
            client.trigger_build("deploy-api")

    def test_cancel_queue(self, client, session):
        """Test that queue entries are cancelled by id."""
        self.route(session, {("POST", "queue/cancelItem"): make_response(status=204)})

        client.cancel_queue(77)

        post = session.request.call_args
        assert post.args[0] == "POST"
        assert post.kwargs["params"] == {"id": 77}

    @patch("jj_client.client.time.sleep")
    def test_cancel_build_reports_final_status(self, mock_sleep, client, session):
        """Test that cancel waits for the build to stop and returns its result."""
        states = iter(
            [
                make_response({"number": 7, "building": True, "result": None}),
                make_response({"number": 7, "building": False, "result": "ABORTED"}),
            ]
        )

        def request(method, url, **kwargs):
            if method == "POST":
                return make_response()
            if url.endswith("crumbIssuer/api/json"):
                return make_response(status=404)
            return next(states)

        session.request.side_effect = request

        assert client.cancel_build("deploy-api", 7) == "ABORTED"
        assert mock_sleep.call_count == 1

    @patch("jj_client.client.time.sleep")
    def test_cancel_build_already_finished(self, mock_sleep, client, session):
        """Test that a build that finished first reports its own result."""

        def request(method, url, **kwargs):
            if method == "POST" or url.endswith("crumbIssuer/api/json"):
                return make_response()
            return make_response({"number": 7, "building": False, "result": "SUCCESS"})

        session.request.side_effect = request

        assert client.cancel_build("deploy-api", 7) == "SUCCESS"
        mock_sleep.assert_not_called()


class TestJenkinsClientQueue:
    """Test suite for queue lookups."""

    def test_get_queue_item(self, client, session):
        session.request.return_value = make_response(
            {"id": 77, "task": {"name": "deploy-api"}}
        )

        item = client.get_queue_item(77)

        assert item.task_name == "deploy-api"
        assert called_url(session) == "http://jenkins/queue/item/77/api/json"

    def test_list_queue(self, client, session):
        session.request.return_value = make_response(
            {"items": [{"id": 1, "task": {"name": "a"}}, {"id": 2, "task": {"name": "b"}}]}
        )

        assert [item.id for item in client.list_queue()] == [1, 2]
