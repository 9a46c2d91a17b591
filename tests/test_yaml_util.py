import pytest

from project_operator.core.errors import DocumentFormatError
from project_operator.utils.yaml_util import load_yaml_from_path, save_yaml_to_path
from tests.conftest import ACCESS_CONTROL_VALUES


def test_save_keeps_comments_and_layout(tmp_path):
    values_path = tmp_path / "vault" / "rbac_values.yaml"
    values_path.parent.mkdir()
    values_path.write_text(ACCESS_CONTROL_VALUES)

    data = load_yaml_from_path(str(values_path))
    data["vault"]["image"] = "hashicorp/vault:1.17"
    save_yaml_to_path(str(values_path), data)

    text = values_path.read_text()
    assert text.startswith("# managed by the platform team\n")
    assert "  image: hashicorp/vault:1.17\n" in text
    assert "rules: |-\n" in text
    assert load_yaml_from_path(str(values_path))["vault"]["externalConfig"]["groups"][0]["name"] == "platform-admins"


def test_save_creates_parent_directories(tmp_path):
    target = tmp_path / "a" / "b" / "values.yaml"

    save_yaml_to_path(str(target), {"vault": {"externalConfig": {"policies": []}}})

    assert load_yaml_from_path(str(target))["vault"]["externalConfig"]["policies"] == []


def test_load_missing_file(tmp_path):
    with pytest.raises(DocumentFormatError, match="not found"):
        load_yaml_from_path(str(tmp_path / "missing.yaml"))


def test_load_invalid_yaml(tmp_path):
    broken = tmp_path / "broken.yaml"
    broken.write_text("vault:\n  externalConfig: [unclosed\n")

    with pytest.raises(DocumentFormatError, match="broken.yaml"):
        load_yaml_from_path(str(broken))
