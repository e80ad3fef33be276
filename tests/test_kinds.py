"""Unit tests for resources.py and kinds.py - Config models and kind wrappers."""

import pytest
from pydantic import ValidationError

from conftest import arr_spec, prowlarr_spec
from kinds import (
    CONFIG_KINDS,
    DOWNSTREAM_KINDS,
    LidarrConfig,
    ProwlarrConfig,
    SonarrConfig,
    wrap,
)
from resources import (
    KIND_LIDARR,
    KIND_PROWLARR,
    KIND_READARR,
    KIND_SONARR,
    ConfigStatus,
    ProwlarrRegistration,
    Resource,
    finalizer_for_kind,
    parse_duration,
)


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, None),
            ("", None),
            (90, 90),
            ("120", 120),
            ("5m", 300),
            ("1h30m", 5400),
            ("45s", 45),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["soon", "5d", True, -1, [1]])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestResource:
    """Tests for the Resource envelope."""

    def test_key(self):
        resource = Resource(kind=KIND_SONARR, namespace="media", name="tv")
        assert resource.key == "SonarrConfig/media/tv"

    def test_finalizer_name(self):
        assert finalizer_for_kind(KIND_SONARR) == (
            "sonarrconfig.arr-operator.io/finalizer"
        )

    def test_being_deleted(self):
        resource = Resource(kind=KIND_SONARR, name="tv")
        assert resource.being_deleted is False


class TestStatusDocument:
    """Tests for the persisted status shape."""

    def test_camel_case_round_trip(self):
        """Test status is stored in camelCase and parsed back."""
        status = ConfigStatus(
            connected=True,
            service_version="4.0.1",
            prowlarr_registration=ProwlarrRegistration(
                registered=True, prowlarr_name="prowlarr", application_id=3
            ),
        )
        document = status.to_document()

        assert document["serviceVersion"] == "4.0.1"
        assert document["prowlarrRegistration"]["applicationId"] == 3
        assert "lastAppliedHash" not in document
        assert ConfigStatus.model_validate(document) == status


class TestWrap:
    """Tests for kind wrapping."""

    def test_every_kind_has_a_wrapper(self):
        assert set(CONFIG_KINDS) == {
            KIND_SONARR,
            "RadarrConfig",
            KIND_LIDARR,
            KIND_READARR,
            KIND_PROWLARR,
        }
        assert KIND_PROWLARR not in DOWNSTREAM_KINDS

    def test_wraps_downstream_kind(self):
        resource = Resource(kind=KIND_LIDARR, name="music", spec=arr_spec())
        config = wrap(resource)

        assert isinstance(config, LidarrConfig)
        assert config.app_type == "lidarr"
        assert config.finalizer_name == "lidarrconfig.arr-operator.io/finalizer"
        assert config.should_register_with_prowlarr() is True

    def test_prowlarr_never_registers(self):
        resource = Resource(kind=KIND_PROWLARR, name="p", spec=prowlarr_spec())
        config = wrap(resource)

        assert isinstance(config, ProwlarrConfig)
        assert config.should_register_with_prowlarr() is False
        assert config.prowlarr_ref is None
        assert config.indexers is None

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown config kind"):
            wrap(Resource(kind="PlexConfig", name="x"))

    def test_invalid_spec(self):
        with pytest.raises(ValidationError):
            wrap(Resource(kind=KIND_SONARR, name="tv", spec={}))

    def test_spec_accepts_camel_case(self):
        spec = arr_spec(
            indexers={"prowlarrRef": {"name": "prowlarr", "autoRegister": False}},
            reconciliation={"interval": "10m", "suspend": False},
        )
        config = SonarrConfig(Resource(kind=KIND_SONARR, name="tv", spec=spec))

        assert config.prowlarr_ref.name == "prowlarr"
        assert config.prowlarr_ref.auto_register is False
        assert config.requeue_interval == 600
        assert config.suspended is False

    def test_prowlarr_ref_defaults(self):
        spec = arr_spec(indexers={"prowlarrRef": {"name": "prowlarr"}})
        config = wrap(Resource(kind=KIND_SONARR, name="tv", spec=spec))

        assert config.prowlarr_ref.auto_register is True
        assert config.prowlarr_ref.include == []

    def test_application_type_lowercased(self):
        spec = prowlarr_spec(
            applications=[{"name": "tv", "type": "Sonarr", "url": "http://s"}]
        )
        config = wrap(Resource(kind=KIND_PROWLARR, name="p", spec=spec))

        assert config.prowlarr_applications[0].type == "sonarr"

    def test_status_is_a_working_copy(self):
        resource = Resource(
            kind=KIND_SONARR,
            name="tv",
            spec=arr_spec(),
            status={"connected": True},
        )
        config = wrap(resource)
        config.status.connected = False

        assert resource.status == {"connected": True}
        assert config.status_document()["connected"] is False
