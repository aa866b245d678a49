from typing import AsyncIterator, List


async def aiter_sse_data(resp) -> AsyncIterator[str]:
    """按空行切分事件帧，拼接同一帧内的多条 data 行后产出。

    event/id/retry 字段与 ":" 注释行忽略。
    """
    lines: List[str] = []
    async for line in resp.aiter_lines():
        line = line.rstrip("\r")
        if not line:
            if lines:
                yield "\n".join(lines)
                lines = []
            continue
        if line.startswith("data:"):
            data = line[len("data:"):]
            if data.startswith(" "):
                data = data[1:]
            lines.append(data)
    # 连接关闭时丢弃未以空行结束的半帧
