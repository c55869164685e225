"""Tests for manifest parsing and discovery."""

import pytest

from phaseci.errors import ManifestError
from phaseci.manifest import (
    discover_manifest,
    load_manifest,
    load_pipeline,
    parse_manifest,
)


class TestReferenceManifest:
    def test_phases_in_file_order(self, reference_manifest):
        pipeline = load_manifest(reference_manifest)
        assert pipeline.phase_names == ["dependencies", "test"]

    def test_dependency_commands_verbatim(self, reference_manifest):
        deps = load_manifest(reference_manifest).phase("dependencies")
        runs = [c.run for c in deps.commands]
        assert runs[0].startswith("bash <(curl -sf ")
        assert runs[1:] == [
            "multirust update stable",
            "multirust update nightly",
            "multirust update beta",
        ]

    def test_three_test_commands(self, reference_manifest):
        test = load_manifest(reference_manifest).phase("test")
        assert len(test) == 3
        assert all("cargo test --color=never -- --color never" in c.run for c in test.commands)
        assert [c.index for c in test.commands] == [0, 1, 2]
        assert {c.phase for c in test.commands} == {"test"}

    def test_cache_directories(self, reference_manifest):
        pipeline = load_manifest(reference_manifest)
        assert [(d.path, d.phase) for d in pipeline.cache_directives] == [
            ("~/.multirust", "dependencies")
        ]


class TestSections:
    def test_pre_override_post_order(self):
        pipeline = parse_manifest(
            {"test": {"post": ["c"], "override": ["b"], "pre": ["a"]}}
        )
        cmds = pipeline.phase("test").commands
        assert [c.run for c in cmds] == ["a", "b", "c"]
        assert [c.section for c in cmds] == ["pre", "override", "post"]

    def test_bare_list_is_override(self):
        pipeline = parse_manifest({"compile": ["make"]})
        (only,) = pipeline.phase("compile").commands
        assert only.run == "make"
        assert only.section == "override"

    def test_null_phase_is_empty(self):
        pipeline = parse_manifest({"dependencies": None, "test": ["true"]})
        assert len(pipeline.phase("dependencies")) == 0
        assert pipeline.phase_names == ["dependencies", "test"]

    def test_empty_document(self):
        assert len(parse_manifest(None)) == 0


class TestValidation:
    def test_top_level_must_be_mapping(self):
        with pytest.raises(ManifestError, match="top level"):
            parse_manifest(["echo hi"])

    def test_phase_must_be_mapping_or_list(self):
        with pytest.raises(ManifestError) as exc:
            parse_manifest({"test": "echo hi"})
        assert exc.value.key == "test"

    def test_unknown_section_names_key(self):
        with pytest.raises(ManifestError) as exc:
            parse_manifest({"test": {"overide": ["x"]}})
        assert exc.value.key == "test"
        assert "overide" in exc.value.message

    def test_non_string_command_rejected(self):
        with pytest.raises(ManifestError) as exc:
            parse_manifest({"test": {"override": ["ok", 42]}})
        assert exc.value.key == "test.override"
        assert "entry #2" in exc.value.message

    def test_blank_command_rejected(self):
        with pytest.raises(ManifestError, match="blank"):
            parse_manifest({"test": {"override": ["   "]}})

    def test_command_list_must_be_list(self):
        with pytest.raises(ManifestError) as exc:
            parse_manifest({"test": {"override": "make test"}})
        assert exc.value.key == "test.override"

    def test_invalid_yaml(self, write_manifest):
        path = write_manifest("test:\n  override: [unclosed\n")
        with pytest.raises(ManifestError, match="invalid YAML"):
            load_manifest(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestError, match="not found"):
            load_manifest(tmp_path / "nope.yml")

    def test_duplicate_phase_rejected(self, write_manifest):
        path = write_manifest("test:\n  - echo a\ntest:\n  - echo b\n")
        with pytest.raises(ManifestError) as exc:
            load_manifest(path)
        assert exc.value.key == "test"
        assert "duplicate phase" in exc.value.message
        assert "line 3" in exc.value.message

    def test_duplicate_section_rejected(self, write_manifest):
        path = write_manifest("test:\n  override: ['echo a']\n  override: ['echo b']\n")
        with pytest.raises(ManifestError, match="duplicate key 'override'"):
            load_manifest(path)

    def test_error_message_includes_source_and_key(self):
        err = ManifestError("circle.yml", "bad", key="test")
        assert str(err) == "circle.yml [test]: bad"


class TestPythonPipelines:
    def test_module_level_pipeline(self, tmp_path):
        path = tmp_path / "phaseci_pipeline.py"
        path.write_text(
            "from phaseci import pipeline, phase\n"
            "PIPELINE = pipeline(phase('build', 'make'), phase('test', 'make test'))\n"
        )
        p = load_pipeline(path)
        assert p.phase_names == ["build", "test"]
        assert p.source == str(path.resolve())

    def test_pipeline_function(self, tmp_path):
        path = tmp_path / "ci_pipeline.py"
        path.write_text(
            "from phaseci.dsl import pipeline as make, phase\n"
            "def pipeline():\n"
            "    return make(phase('test', 'pytest'))\n"
        )
        assert load_pipeline(path).phase_names == ["test"]

    def test_module_without_pipeline(self, tmp_path):
        path = tmp_path / "empty.py"
        path.write_text("X = 1\n")
        with pytest.raises(ManifestError, match="must define"):
            load_pipeline(path)

    def test_error_in_pipeline_file(self, tmp_path):
        path = tmp_path / "phaseci_pipeline.py"
        path.write_text(
            "from phaseci import pipeline, phase\n"
            "PIPELINE = pipeline(phase('test', 'true'), phase('test', 'true'))\n"
        )
        with pytest.raises(ManifestError, match="failed to load pipeline") as exc:
            load_pipeline(path)
        assert "Duplicate phase name: test" in exc.value.message
        assert isinstance(exc.value.__cause__, ValueError)

    def test_syntax_error_in_pipeline_file(self, tmp_path):
        path = tmp_path / "broken.py"
        path.write_text("def pipeline(:\n")
        with pytest.raises(ManifestError, match="failed to load pipeline"):
            load_pipeline(path)

    def test_unknown_suffix(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text("{}")
        with pytest.raises(ManifestError, match="expected a .yml"):
            load_pipeline(path)


class TestDiscovery:
    def test_explicit_path(self, write_manifest):
        path = write_manifest("test: [true]\n", name="custom.yml")
        assert discover_manifest(str(path)) == path

    def test_explicit_missing(self, tmp_path):
        with pytest.raises(ManifestError, match="not found"):
            discover_manifest(str(tmp_path / "missing.yml"))

    def test_default_name(self, write_manifest, tmp_path):
        path = write_manifest("test: [true]\n")
        assert discover_manifest(None, directory=tmp_path) == path

    def test_none_found(self, tmp_path):
        with pytest.raises(ManifestError, match="no manifest found"):
            discover_manifest(None, directory=tmp_path)

    def test_several_found(self, write_manifest, tmp_path):
        write_manifest("test: [true]\n")
        write_manifest("test: [true]\n", name="circle.yaml")
        with pytest.raises(ManifestError, match="multiple manifests"):
            discover_manifest(None, directory=tmp_path)
