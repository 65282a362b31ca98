from unittest.mock import MagicMock, patch

from capsize.hardware_detector import HARDWARE_OPTIONS, HardwareDetector

CHAIN = [
    {'label': 'preferred', 'codec': 'auto_h264', 'preset': 'fast', 'audio_codec': 'aac'},
    {'label': 'compatible', 'codec': 'libx264', 'preset': 'fast', 'audio_codec': 'aac'},
    {'label': 'minimal', 'codec': 'libx264', 'preset': 'ultrafast', 'audio_codec': 'aac', 'threads': 1},
]


def detector_with(encoders):
    detector = HardwareDetector(probe_encoders=False)
    detector.ffmpeg_encoders = dict(encoders)
    return detector


def test_best_encoder_prefers_hardware():
    detector = detector_with({'h264_nvenc': False, 'h264_qsv': True, 'libx264': True})
    assert detector.get_best_encoder('h264') == ('h264_qsv', 'intel')


def test_best_encoder_falls_back_to_software():
    detector = detector_with({})
    assert detector.get_best_encoder('h264') == ('libx264', 'software')
    assert detector.get_best_encoder('hevc') == ('libx265', 'software')


def test_force_software_ignores_hardware():
    detector = detector_with({'h264_nvenc': True})
    detector.force_software_encoding()
    assert detector.get_best_encoder('h264') == ('libx264', 'software')


def test_resolve_chain_substitutes_hardware_encoder():
    detector = detector_with({'h264_nvenc': True})

    chain = detector.resolve_chain(CHAIN, audio_bitrate=128_000)

    assert [p.codec for p in chain] == ['h264_nvenc', 'libx264', 'libx264']
    assert chain[0].options[:len(HARDWARE_OPTIONS['nvidia'])] == HARDWARE_OPTIONS['nvidia']
    assert chain[0].preset is None
    assert all(p.audio_bitrate == 128_000 for p in chain)
    assert [p.label for p in chain] == ['preferred', 'compatible', 'minimal']


def test_resolve_chain_collapses_duplicate_software_steps():
    chain = detector_with({}).resolve_chain(CHAIN)

    assert [p.label for p in chain] == ['preferred', 'minimal']
    assert chain[0].codec == 'libx264'
    assert chain[1].threads == 1


def test_recommended_concurrency_bounded_by_cores():
    detector = detector_with({})
    detector.system_info['cpu_count'] = 4
    assert detector.recommended_concurrency(8) == 2
    assert detector.recommended_concurrency(1) == 1
    detector.system_info['cpu_count'] = 1
    assert detector.recommended_concurrency(4) == 1


def test_encoder_detection_parses_ffmpeg_listing():
    # System facts are gathered outside the patch; platform also shells out
    detector = HardwareDetector(probe_encoders=False)
    listing = MagicMock(returncode=0, stderr='', stdout=(
        "Encoders:\n"
        " V....D libx264              libx264 H.264 / AVC\n"
        " V....D h264_nvenc           NVIDIA NVENC H.264 encoder\n"
        " A....D libopus              libopus Opus\n"
    ))

    with patch('capsize.hardware_detector.subprocess.run', return_value=listing) as mock_run:
        detector.ffmpeg_encoders = detector._detect_ffmpeg_encoders()

    assert mock_run.call_args[0][0][-1] == '-encoders'
    assert detector.ffmpeg_encoders['libx264']
    assert detector.ffmpeg_encoders['h264_nvenc']
    assert detector.ffmpeg_encoders['libopus']
    assert not detector.ffmpeg_encoders['h264_amf']


def test_missing_ffmpeg_reports_nothing_available():
    detector = HardwareDetector(probe_encoders=False)
    with patch('capsize.hardware_detector.subprocess.run', side_effect=FileNotFoundError('ffmpeg')):
        detector.ffmpeg_encoders = detector._detect_ffmpeg_encoders()

    assert not any(detector.ffmpeg_encoders.values())
    assert 'Preferred H.264 encoder: libx264 (software)' in detector.get_system_report()
