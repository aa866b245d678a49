class MessageSink:
    """目标消息的输出端。create 返回新消息的句柄，update 就地编辑。

    内容未变化时实现方应抛出 SinkError(content_unchanged=True)。
    """

    async def create(self, chat_id: int, text: str) -> int:
        raise NotImplementedError

    async def update(self, chat_id: int, message_id: int, text: str) -> None:
        raise NotImplementedError
