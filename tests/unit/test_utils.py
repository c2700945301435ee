import io
import zipfile

from stackswap.utils.archives import create_zip_file_from_string
from stackswap.utils.objects import transform_object_keys
from stackswap.utils.strings import first_char_to_lower, to_bytes, to_str


def test_string_conversions():
    assert to_str(b"abc") == "abc"
    assert to_str("abc") == "abc"
    assert to_bytes("abc") == b"abc"
    assert first_char_to_lower("ContainerDefinitions") == "containerDefinitions"
    assert first_char_to_lower("") == ""


class TestTransformObjectKeys:
    def test_nested_keys(self):
        obj = {"Name": "app", "PortMappings": [{"ContainerPort": 80}]}
        assert transform_object_keys(obj, first_char_to_lower) == {
            "name": "app",
            "portMappings": [{"containerPort": 80}],
        }

    def test_keep_case(self):
        obj = {
            "ContainerDefinitions": [
                {"DockerLabels": {"Team": "Platform"}, "Options": {"Key": "Value"}}
            ]
        }
        keep_case = {"ContainerDefinitions": {"DockerLabels": True}}

        assert transform_object_keys(obj, first_char_to_lower, keep_case) == {
            "containerDefinitions": [
                {"dockerLabels": {"Team": "Platform"}, "options": {"key": "Value"}}
            ]
        }


def test_create_zip_file_from_string():
    content = create_zip_file_from_string("index.js", "exports.handler = () => {}")

    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        [info] = archive.infolist()
        assert info.filename == "index.js"
        assert archive.read("index.js") == b"exports.handler = () => {}"
        assert (info.external_attr >> 16) & 0o777 == 0o755
