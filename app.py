from __future__ import annotations

import tempfile
import uuid
from datetime import datetime
from pathlib import Path

import pandas as pd
import streamlit as st

from video_ladder.artifact import build_download_artifact, to_processed_files
from video_ladder.config import load_config, validate_runtime
from video_ladder.downloader import is_remote_source
from video_ladder.job_queue import JobQueue
from video_ladder.models import JobOutcome
from video_ladder.orchestrator import HLS_DIRNAME
from video_ladder.progress import QueueProgressSink


st.set_page_config(page_title="HLS 多码率转码", layout="wide")
st.title("Python + Streamlit HLS 多码率转码工具")

config = load_config()

st.caption(
    "当前配置: "
    f"ladder={','.join(p.name for p in config.ladder)} | "
    f"rendition_timeout_sec={config.rendition_timeout_sec} | "
    f"segment_sec={config.segment_sec} | "
    f"max_jobs={config.max_concurrent_jobs} | "
    f"rendition_workers={config.rendition_workers}"
)

runtime_errors = validate_runtime(config)
if runtime_errors:
    st.error("运行前置检查未通过：\n- " + "\n- ".join(runtime_errors))

with st.expander("输入说明", expanded=False):
    st.markdown(
        "\n".join(
            [
                "- 上传本地视频文件，或填写公开 `http/https` 视频链接（链接优先）",
                "- 输出按源分辨率筛选码率档位，高于源分辨率的档位自动跳过",
                "- 源分辨率低于最小档位时，按原始分辨率输出一档 `original`",
                "- 单个档位失败或超时不影响其他档位，至少一档成功即视为完成",
            ]
        )
    )

video_url = st.text_input("视频链接（可选）", placeholder="https://example.com/video.mp4")
uploaded_file = st.file_uploader(
    "上传视频",
    type=["mp4", "mov", "mkv", "webm", "avi", "flv", "wmv", "3gp"],
)

if "vl_outcome" not in st.session_state:
    st.session_state["vl_outcome"] = None
if "vl_logs" not in st.session_state:
    st.session_state["vl_logs"] = []
if "vl_output_dir" not in st.session_state:
    st.session_state["vl_output_dir"] = None


start_clicked = st.button("开始转码", type="primary", disabled=bool(runtime_errors))

if start_clicked:
    st.session_state["vl_outcome"] = None
    st.session_state["vl_logs"] = []

    source = video_url.strip()
    if source and not is_remote_source(source):
        st.warning("视频链接非法：仅支持公开 http/https 链接")
        st.stop()

    work_dir = Path(tempfile.mkdtemp(prefix="video_ladder_ui_"))
    if not source:
        if uploaded_file is None:
            st.warning("请上传视频或填写视频链接。")
            st.stop()
        source_path = work_dir / f"source{Path(uploaded_file.name).suffix.lower() or '.mp4'}"
        source_path.write_bytes(uploaded_file.getvalue())
        source = str(source_path)

    job_id = uuid.uuid4().hex[:12]
    output_dir = work_dir / job_id

    progress_box = st.progress(0, text="排队中...")
    log_box = st.empty()
    logs: list[str] = []
    sink = QueueProgressSink()

    def log_cb(message: str) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        logs.append(f"[{ts}] {message}")

    with JobQueue(config, progress_sink=sink, log_cb=log_cb) as job_queue:
        job_queue.add(job_id, source, output_dir)
        # Streamlit 只能在主线程刷新界面，这里轮询进度通道
        while not job_queue.wait(timeout=0.5):
            for event in sink.drain():
                if event.percent >= 0:
                    progress_box.progress(event.percent / 100, text=event.message)
            log_box.code("\n".join(logs[-200:]))
        outcome = job_queue.pop_outcome(job_id)

    progress_box.progress(1.0 if outcome.status == "ready" else 0.0, text=outcome.status)
    st.session_state["vl_outcome"] = outcome
    st.session_state["vl_logs"] = logs
    st.session_state["vl_output_dir"] = output_dir

if st.session_state.get("vl_outcome") is not None:
    outcome: JobOutcome = st.session_state["vl_outcome"]
    logs = st.session_state.get("vl_logs", [])
    output_dir = st.session_state["vl_output_dir"]

    if outcome.status == "ready" and outcome.result is not None:
        result = outcome.result
        st.success(f"转码完成：{len(result.renditions)} 档，缩略图 {len(result.thumbnails)} 张")

        st.subheader("码率档位")
        table_rows = [
            {
                "name": item.profile.name,
                "resolution": item.profile.resolution,
                "bitrate_kbps": item.actual_bitrate_kbps,
                "status": "SUCCESS" if item.succeeded else "FAILED",
                "segments": len(item.segment_files),
                "error": item.error,
            }
            for item in result.renditions + result.failed_renditions
        ]
        st.dataframe(pd.DataFrame(table_rows), use_container_width=True)

        if result.thumbnails:
            st.subheader("缩略图")
            st.image(
                [str(output_dir / HLS_DIRNAME / name) for name in result.thumbnails],
                width=200,
            )

        with st.expander("记录数据", expanded=False):
            st.json(to_processed_files(result))

        mime, file_name, payload = build_download_artifact(result, output_dir)
        st.download_button(
            label=f"下载结果：{file_name}",
            data=payload,
            file_name=file_name,
            mime=mime,
        )
    else:
        st.error(f"转码失败：{outcome.error}")

    st.subheader("实时日志")
    st.code("\n".join(logs[-500:]) if logs else "(无日志)")
