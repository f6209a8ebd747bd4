"""PyAudio microphone input for NR Recorder.

:class:`MicrophoneInput` is the hardware collaborator used by
:class:`~nr_recorder.core.recording.CapturePipeline`.  The capture mode picks
the input device: with ``denoise`` the configured noise-suppressing source is
opened (for example a PulseAudio ``echo-cancel`` source), otherwise the plain
passthrough device.  The stream always runs at the device's native sample
rate, so the pipeline adapts to whatever format the hardware grants.
"""

from typing import Any, Dict, List, Optional

import pyaudio
from loguru import logger

from .config import CHANNEL, CHUNK, RATE
from .errors import ConfigurationError
from .models import AudioBlock, StreamFormat
from .processing import detect_driver_type


class RecordingEngine:
    """Static helpers for enumerating input devices."""

    @staticmethod
    def list_devices(
        driver_filter: Optional[str] = None,
        audio: Optional[pyaudio.PyAudio] = None,
    ) -> List[Dict[str, Any]]:
        """List all available input audio devices.

        Args:
            driver_filter: Optional driver type to filter by ('pulse', 'alsa', 'jack', 'usb', 'default')
            audio: Existing PyAudio instance to reuse; a temporary one is created otherwise

        Returns:
            List of device dicts with keys: id, name, driver, channels, rate, is_default
        """
        owns_audio = audio is None
        if audio is None:
            audio = pyaudio.PyAudio()

        try:
            try:
                default_device_id = int(audio.get_default_input_device_info()['index'])
            except IOError:
                default_device_id = -1

            input_devices = []
            for i in range(audio.get_device_count()):
                device_info = audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) <= 0:
                    continue

                device_name = device_info.get('name', 'Unknown')
                driver_type = detect_driver_type(device_name)

                # Skip if driver filter is specified and doesn't match
                if driver_filter and driver_type != driver_filter.lower():
                    continue

                input_devices.append({
                    'id': i,
                    'name': device_name,
                    'driver': driver_type,
                    'channels': int(device_info.get('maxInputChannels', 0)),
                    'rate': int(device_info.get('defaultSampleRate', 0)),
                    'is_default': i == default_device_id,
                })
            return input_devices
        finally:
            if owns_audio:
                audio.terminate()


class MicrophoneInput:
    """Callback-driven PyAudio input producing float32 :class:`AudioBlock` objects."""

    def __init__(
        self,
        denoise_device: Optional[str] = None,
        raw_device: Optional[str] = None,
        device_id: Optional[int] = None,
        chunk: int = CHUNK,
        channels: int = CHANNEL,
        rate: int = RATE,
    ) -> None:
        """Initialize the microphone input.

        Args:
            denoise_device: Device name substring opened in denoise mode
            raw_device: Device name substring opened in raw mode
            device_id: Explicit device index, overrides both name hints
            chunk: Frames per callback buffer
            channels: Requested channel count (capped by the device)
            rate: Sample rate used when the device reports no native rate
        """
        self._denoise_device = denoise_device
        self._raw_device = raw_device
        self._device_id = device_id
        self._chunk = chunk
        self._channels = channels
        self._rate = rate

        self._audio_interface: Optional[pyaudio.PyAudio] = None
        self._audio_stream = None
        self._format: Optional[StreamFormat] = None
        self._on_block = None

    def acquire(self, denoise: bool) -> StreamFormat:
        """Open PortAudio and resolve the device for a capture mode.

        Args:
            denoise: Select the noise-suppressing device

        Returns:
            Format granted by the device

        Raises:
            ConfigurationError: If PortAudio fails or no matching device exists
        """
        if self._audio_interface is not None:
            raise ConfigurationError("Microphone input is already acquired")

        try:
            self._audio_interface = pyaudio.PyAudio()
            device_info = self._resolve_device(denoise)
        except ConfigurationError:
            self.release()
            raise
        except (IOError, OSError) as e:
            self.release()
            raise ConfigurationError(f"Cannot configure audio input: {e}") from e

        max_channels = int(device_info.get('maxInputChannels', 0))
        if max_channels <= 0:
            self.release()
            raise ConfigurationError(f"Device {device_info.get('name')} has no input channels")

        # Use the device's native sample rate
        self._format = StreamFormat(
            sample_rate=int(device_info.get('defaultSampleRate') or self._rate),
            channels=max(1, min(self._channels, max_channels)),
            denoise=denoise,
            device_id=int(device_info['index']),
            device_name=device_info.get('name', 'Unknown'),
        )
        logger.info(
            f"Audio input acquired: {self._format.device_name} (ID: {self._format.device_id}), "
            f"{self._format.sample_rate} Hz, {self._format.channels} ch"
        )
        return self._format

    def _resolve_device(self, denoise: bool) -> Dict[str, Any]:
        audio = self._audio_interface
        if self._device_id is not None:
            return audio.get_device_info_by_index(self._device_id)

        hint = self._denoise_device if denoise else self._raw_device
        if not hint:
            return audio.get_default_input_device_info()

        for i in range(audio.get_device_count()):
            device_info = audio.get_device_info_by_index(i)
            if (
                device_info.get('maxInputChannels', 0) > 0
                and hint.lower() in str(device_info.get('name', '')).lower()
            ):
                return device_info

        mode = 'denoise' if denoise else 'raw'
        raise ConfigurationError(f"No input device matching '{hint}' for {mode} mode")

    def start(self, on_block) -> None:
        """Register *on_block* and start the callback stream.

        Raises:
            ConfigurationError: If the stream cannot be opened
        """
        if self._audio_interface is None or self._format is None:
            raise ConfigurationError("Microphone input must be acquired before starting")

        self._on_block = on_block
        try:
            self._audio_stream = self._audio_interface.open(
                format=pyaudio.paFloat32,
                channels=self._format.channels,
                rate=self._format.sample_rate,
                input=True,
                input_device_index=self._format.device_id,
                frames_per_buffer=self._chunk,
                stream_callback=self._fill_buffer,
            )
        except (IOError, OSError, ValueError) as e:
            self._on_block = None
            raise ConfigurationError(f"Cannot open input stream: {e}") from e

    def stop(self) -> None:
        """Unregister the callback and halt the stream."""
        self._on_block = None
        stream = self._audio_stream
        if stream is None:
            return
        self._audio_stream = None
        try:
            stream.stop_stream()
        finally:
            stream.close()

    def release(self) -> None:
        """Terminate PortAudio so the device is free for other applications."""
        self._format = None
        if self._audio_interface is not None:
            self._audio_interface.terminate()
            self._audio_interface = None
            logger.info('Microphone has been released')

    def _fill_buffer(
        self,
        in_data: bytes,
        frame_count: int,
        time_info: object,
        status_flags: object,
    ) -> tuple:
        """Forward each PortAudio buffer to the registered callback.

        Args:
            in_data: The audio data as a bytes object
            frame_count: The number of frames captured
            time_info: The time information
            status_flags: The status flags

        Returns:
            Tuple of (data, status_flag)
        """
        on_block = self._on_block
        fmt = self._format
        if on_block is not None and fmt is not None and in_data:
            on_block(AudioBlock.from_bytes(in_data, fmt.channels))
        return None, pyaudio.paContinue
