import pytest

from capture_pipeline.camera import CaptureDevice, OpenCVPlatform, choose_device, is_rear_label
from capture_pipeline.errors import DeviceOpenError


class TestRearLabel:
    @pytest.mark.parametrize("label", ["Back Camera", "rear wide", "camera2 0, facing ENVIRONMENT"])
    def test_rear_labels(self, label):
        assert is_rear_label(label)

    def test_front_label(self):
        assert not is_rear_label("FaceTime HD Camera")

    def test_custom_hints(self):
        assert is_rear_label("Logitech BRIO", hints=("brio",))


class TestChooseDevice:
    DEVICES = [
        CaptureDevice("video0", "Integrated Webcam"),
        CaptureDevice("video2", "USB Back Camera"),
        CaptureDevice("video4", "Document Cam"),
    ]

    def test_explicit_device_wins(self):
        assert choose_device(self.DEVICES, "video4").device_id == "video4"

    def test_unknown_preference_falls_back_to_rear(self):
        assert choose_device(self.DEVICES, "missing").device_id == "video2"

    def test_first_device_when_no_rear(self):
        devices = [CaptureDevice("video0", "Webcam"), CaptureDevice("video1", "Other")]
        assert choose_device(devices).device_id == "video0"

    def test_flagged_rear_device(self):
        devices = [CaptureDevice("a", ""), CaptureDevice("b", "", is_rear_facing=True)]
        assert choose_device(devices).device_id == "b"

    def test_no_devices(self):
        assert choose_device([]) is None


class TestDeviceIndex:
    @pytest.mark.parametrize("device_id, index", [("video0", 0), ("video12", 12), ("camera3", 3)])
    def test_trailing_number(self, device_id, index):
        assert OpenCVPlatform._device_index(device_id) == index

    def test_unrecognised_id(self):
        with pytest.raises(DeviceOpenError):
            OpenCVPlatform._device_index("front")
