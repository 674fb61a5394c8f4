# tenant_backup/backups/repository.py

"""
Section sources: one function per exported section.

Each source takes ``(tenant_id, source_db)`` and returns the section's records
as a list of dicts in column order. A zero-length list is a valid answer.
Every call opens and disposes its own connection.
"""

from typing import Any, Dict, List

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from tenant_backup.backups.exceptions import BackupError
from tenant_backup.backups.schemas import SourceConnection
from tenant_backup.core.config import Settings
from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)

Record = Dict[str, Any]


class SourceDatabase:
    """Connection parameters for one tenant database plus driver options."""

    def __init__(self, connection: SourceConnection, settings: Settings):
        self.connection = connection
        self.driver = settings.source_db_driver
        self.port = connection.port or settings.source_db_port
        self.connect_args = {}
        if self.driver.startswith("mssql+pymssql"):
            self.connect_args = {
                "login_timeout": settings.source_db_login_timeout,
                "timeout": settings.source_db_query_timeout,
            }

    @property
    def label(self) -> str:
        return self.connection.database

    @property
    def url(self) -> URL:
        return URL.create(
            self.driver,
            username=self.connection.user,
            password=self.connection.password,
            host=self.connection.host,
            port=self.port,
            database=self.connection.database,
        )

    def fetch_all(self, sql: str, params: Dict[str, Any]) -> List[Record]:
        """Run one query on a fresh connection and return every row as a dict."""
        logger.info(
            f"Connecting to {self.connection.host}/{self.connection.database}"
        )
        engine = create_engine(self.url, poolclass=NullPool, connect_args=self.connect_args)
        try:
            with engine.connect() as conn:
                result = conn.execute(text(sql), params)
                rows = [dict(row._mapping) for row in result]
            logger.info(f"Query returned {len(rows)} rows")
            return rows
        except SQLAlchemyError as e:
            logger.error(f"Error executing query: {e}")
            raise BackupError(f"Error executing query: {e}") from e
        finally:
            engine.dispose()


def fetch_patients(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            PACIENTES.NOME, PACIENTES.CPF, PACIENTES.RG, PACIENTES.CEP,
            PACIENTES.DATADENASCIMENTO, PACIENTES.EMAIL, PACIENTES.STATUS,
            PACIENTES.UF, PACIENTES.CIDADE, PACIENTES.LOGRADOURO,
            PACIENTES.BAIRRO, PACIENTES.NUMERO, PACIENTES.TEL1, PACIENTES.TEL2,
            PACIENTES.CEL, PACIENTES.DATACRIACAO, PACIENTES.SEXO,
            PACIENTES.COMPLEMENTO, PACIENTES.NUMEROFICHA, PACIENTES.FOTO,
            PACIENTES.OBSERVACAO, PACIENTES.NOME_RESPONSAVEL,
            PACIENTES.CPF_RESPONSAVEL
        FROM PACIENTES
        JOIN CLINICAS ON PACIENTES.ID_CLINICA = CLINICAS.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_patient_origins(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT PACIENTES.NOME, PACIENTE_ORIGEM.DESCRICAO
        FROM PACIENTES
        JOIN PACIENTE_ORIGEM ON PACIENTES.ID_ORIGEM = PACIENTE_ORIGEM.ID
        JOIN CLINICAS ON PACIENTES.ID_CLINICA = CLINICAS.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_patient_images(tenant_id: int, db: SourceDatabase) -> List[Record]:
    """Image rows; FOTO holds the object key of each image."""
    return db.fetch_all(
        """
        SELECT CLINICAS.RAZAOSOCIAL AS CLINICA, PACIENTES.NOME, ALBUM_IMAGEM.FOTO
        FROM ALBUM_IMAGEM
        JOIN PACIENTE_ALBUM ON ALBUM_IMAGEM.ID_ALBUM = PACIENTE_ALBUM.ID
        JOIN PACIENTES ON PACIENTE_ALBUM.ID_PACIENTE = PACIENTES.ID
        JOIN CLINICAS ON PACIENTES.ID_CLINICA = CLINICAS.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_appointments(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            PACIENTES.NOME AS PACIENTES, FUNCIONARIOS.NOME AS PROFISSIONAL,
            A.DATAAGENDAMENTO, A.TEMPO, A.OBSERVACAO,
            ESPECIALIDADES.DESCRICAO AS ESPECIALIDADE,
            SERVICOS.DESCRICAO AS PROCEDIMENTO
        FROM AGENDAMENTOS AS A
        INNER JOIN CLINICAS ON A.ID_CLINICA = CLINICAS.ID
        INNER JOIN PACIENTES ON A.ID_PACIENTE = PACIENTES.ID
        LEFT JOIN FUNCIONARIOS ON A.ID_FUNCIONARIO = FUNCIONARIOS.ID
        LEFT JOIN ESPECIALIDADES ON A.ID_ESPECIALIDADE = ESPECIALIDADES.ID
        LEFT JOIN SERVICOS ON A.ID_SERVICO = SERVICOS.ID
        WHERE A.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_orthodontic_visits(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            SERVICOS.DESCRICAO, CONTAS_RECEBER.VALOR_TOTAL,
            PACIENTES.NOME AS PACIENTE, FUNCIONARIOS.NOME AS PROFISSIONAL,
            ATENDIMENTOS_ITENS.DATA, ATENDIMENTOS_ITENS.OBSERVACAO
        FROM ATENDIMENTOS_ITENS
        JOIN FUNCIONARIOS ON ATENDIMENTOS_ITENS.ID_FUNCIONARIO = FUNCIONARIOS.ID
        JOIN ATENDIMENTOS ON ATENDIMENTOS_ITENS.ID_ATENDIMENTO = ATENDIMENTOS.ID
        JOIN PACIENTES ON ATENDIMENTOS.ID_PACIENTE = PACIENTES.ID
        JOIN SERVICOS ON ATENDIMENTOS.ID_SERVICO = SERVICOS.ID
        JOIN CONTAS_RECEBER ON ATENDIMENTOS.ID_CONTAS_RECEBER = CONTAS_RECEBER.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_visits(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            SERVICOS.DESCRICAO, PACIENTES.NOME AS PACIENTE,
            FUNCIONARIOS.NOME AS PROFISSIONAL, ATENDIMENTOS_ITENS.DATA,
            ATENDIMENTOS_ITENS.OBSERVACAO
        FROM ATENDIMENTOS_ITENS
        JOIN FUNCIONARIOS ON ATENDIMENTOS_ITENS.ID_FUNCIONARIO = FUNCIONARIOS.ID
        JOIN ATENDIMENTOS ON ATENDIMENTOS_ITENS.ID_ATENDIMENTO = ATENDIMENTOS.ID
        JOIN PACIENTES ON ATENDIMENTOS.ID_PACIENTE = PACIENTES.ID
        JOIN SERVICOS ON ATENDIMENTOS.ID_SERVICO = SERVICOS.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_received_payments(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            CONTAS_RECEBER_PAGAMENTOS.VALOR, CONTAS_RECEBER_PAGAMENTOS.DATA,
            FORMASPAGAMENTO.DESCRICAO AS FORMAPAGAMENTO,
            CONTAS_RECEBER_PACIENTE.QTD,
            ESPECIALIDADES.DESCRICAO AS ESPECIALIDADE,
            PACIENTES.NOME AS PACIENTE
        FROM CONTAS_RECEBER_PAGAMENTOS
        JOIN CONTAS_RECEBER_PACIENTE
            ON CONTAS_RECEBER_PAGAMENTOS.ID_CONTAS_RECEBER_PACIENTE = CONTAS_RECEBER_PACIENTE.ID
        JOIN FORMASPAGAMENTO ON CONTAS_RECEBER_PACIENTE.ID_FORMA_PAGAMENTO = FORMASPAGAMENTO.ID
        LEFT JOIN ESPECIALIDADES ON CONTAS_RECEBER_PACIENTE.ID_ESPECIALIDADE = ESPECIALIDADES.ID
        LEFT JOIN FUNCIONARIOS ON CONTAS_RECEBER_PACIENTE.ID_FUNCIONARIO = FUNCIONARIOS.ID
        JOIN CONTAS_RECEBER ON CONTAS_RECEBER_PACIENTE.ID_CONTAS_RECEBER = CONTAS_RECEBER.ID
        JOIN PACIENTES ON CONTAS_RECEBER.ID_PACIENTE = PACIENTES.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        ORDER BY CONTAS_RECEBER_PAGAMENTOS.DATA DESC
        """,
        {"tenant_id": tenant_id},
    )


def fetch_scheduled_installments(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            PACIENTES.NOME, CONTAS_RECEBER_LANCAMENTOS_FUTUROS.VALOR,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.PARCELA, FORMASPAGAMENTO.DESCRICAO,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.DATA AS DATA_LANCAMENTOS,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.DATA_BAIXA AS DATA_BAIXA
        FROM CONTAS_RECEBER_LANCAMENTOS_FUTUROS
        JOIN CONTAS_RECEBER_PACIENTE
            ON CONTAS_RECEBER_LANCAMENTOS_FUTUROS.ID_CONTAS_RECEBER_PACIENTE = CONTAS_RECEBER_PACIENTE.ID
        JOIN CONTAS_RECEBER ON CONTAS_RECEBER_PACIENTE.ID_CONTAS_RECEBER = CONTAS_RECEBER.ID
        JOIN FORMASPAGAMENTO ON CONTAS_RECEBER_PACIENTE.ID_FORMA_PAGAMENTO = FORMASPAGAMENTO.ID
        JOIN PACIENTES ON CONTAS_RECEBER.ID_PACIENTE = PACIENTES.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_installment_payments(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            PACIENTES.NOME,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.ID AS ID_LANCAMENTO_FUTURO,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.ID_CONTAS_RECEBER_PACIENTE AS ID_CONTAS_RECEBER_PACIENTE,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.VALOR,
            CONTAS_RECEBER_PACIENTE.VALOR AS VALOR_PARCELADO,
            CONTAS_RECEBER_PACIENTE.DATA AS DATA_PAGAMENTO,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.DATA AS DATA_PARCELA,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.DATA_BAIXA,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.BAIXA,
            CONTAS_RECEBER_LANCAMENTOS_FUTUROS.PARCELA
        FROM CONTAS_RECEBER_LANCAMENTOS_FUTUROS
        JOIN CONTAS_RECEBER_PACIENTE
            ON CONTAS_RECEBER_LANCAMENTOS_FUTUROS.ID_CONTAS_RECEBER_PACIENTE = CONTAS_RECEBER_PACIENTE.ID
        JOIN CONTAS_RECEBER ON CONTAS_RECEBER_PACIENTE.ID_CONTAS_RECEBER = CONTAS_RECEBER.ID
        JOIN PACIENTES ON CONTAS_RECEBER.ID_PACIENTE = PACIENTES.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_quote_procedures(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            PACIENTES.NOME AS PACIENTES, ORCAMENTOSITENS.VALOR,
            TABELA_SERVICO.DESCRICAO AS TABELA,
            ESPECIALIDADES.DESCRICAO AS ESPECIALIDADE,
            SERVICOS.DESCRICAO AS PROCEDIMENTO,
            DENTE, FACE, ARCADA, FACE_DISTAL, FACE_LINGUAL, FACE_MESIAL,
            FACE_OCLUSAL, FACE_VESTIBULAR, ATENDIMENTOS.STATUS
        FROM ORCAMENTOSITENS
        JOIN ORCAMENTOS ON ORCAMENTOSITENS.ID_ORCAMENTO = ORCAMENTOS.ID
        JOIN ATENDIMENTOS ON ORCAMENTOSITENS.ID = ATENDIMENTOS.ID_ORCAMENTOS_ITENS
        INNER JOIN PACIENTES ON ORCAMENTOS.ID_PACIENTE = PACIENTES.ID
        INNER JOIN SERVICOS ON ORCAMENTOSITENS.ID_SERVICO = SERVICOS.ID
        INNER JOIN TABELA_SERVICO ON SERVICOS.ID_TABELA_SERVICO = TABELA_SERVICO.ID
        INNER JOIN ESPECIALIDADES ON SERVICOS.ID_ESPECIALIDADE = ESPECIALIDADES.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_standalone_procedures(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            PACIENTES.NOME AS PACIENTES, CONTAS_RECEBER.VALOR_TOTAL,
            TABELA_SERVICO.DESCRICAO AS TABELA,
            ESPECIALIDADES.DESCRICAO AS ESPECIALIDADE,
            SERVICOS.DESCRICAO AS PROCEDIMENTOS,
            DENTE, FACE, ARCADA, FACE_DISTAL, FACE_LINGUAL, FACE_MESIAL,
            FACE_OCLUSAL, FACE_VESTIBULAR, ATENDIMENTOS.STATUS
        FROM ATENDIMENTOS
        JOIN CONTAS_RECEBER ON ATENDIMENTOS.ID_CONTAS_RECEBER = CONTAS_RECEBER.ID
        INNER JOIN PACIENTES ON CONTAS_RECEBER.ID_PACIENTE = PACIENTES.ID
        INNER JOIN SERVICOS ON CONTAS_RECEBER.ID_SERVICO = SERVICOS.ID
        INNER JOIN TABELA_SERVICO ON SERVICOS.ID_TABELA_SERVICO = TABELA_SERVICO.ID
        INNER JOIN ESPECIALIDADES ON SERVICOS.ID_ESPECIALIDADE = ESPECIALIDADES.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_quotes(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            PACIENTES.NOME, VALOR_TOTAL, ORCAMENTOS.DATACRIACAO AS CRIADO,
            DATA_CONTRATACAO AS CONTRATACAO, FUNCIONARIOS.NOME AS PROFISSIONAL
        FROM ORCAMENTOS
        JOIN PACIENTES ON ORCAMENTOS.ID_PACIENTE = PACIENTES.ID
        JOIN FUNCIONARIOS ON ORCAMENTOS.ID_PROFISSIONAL = FUNCIONARIOS.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_orthodontic_treatments(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            PACIENTES.NOME AS PACIENTES, FUNCIONARIOS.NOME AS PROFISSIONAL,
            DATA_TRATAMENTO_INICIO AS INICIO, DATA_TRATAMENTO_FIM AS FIM,
            DATA_CRIACAO AS CRIADO, DATA_CANCELAMENTO AS CANCELADO,
            DATA_FINALIZACAO AS FINALIZADO
        FROM ORTO
        JOIN PACIENTES ON ORTO.ID_PACIENTE = PACIENTES.ID
        JOIN FUNCIONARIOS ON ORTO.ID_PROFISSIONAL = FUNCIONARIOS.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_follow_ups(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            CLINICAS.RAZAOSOCIAL, PACIENTES.NOME AS PACIENTES,
            RETORNOS.OBSERVACAO, DATA_RETORNO AS DATA, IS_RETORNO AS STATUS
        FROM RETORNOS
        JOIN PACIENTES ON RETORNOS.ID_PACIENTE = PACIENTES.ID
        JOIN CLINICAS ON PACIENTES.ID_CLINICA = CLINICAS.ID
        WHERE PACIENTES.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_paid_bills(tenant_id: int, db: SourceDatabase) -> List[Record]:
    return db.fetch_all(
        """
        SELECT
            CONTASPAGAR.ID, FUNCIONARIOS.NOME AS FUNCIONARIOS,
            FORNECEDORES.RAZAOSOCIAL AS FORNECEDOR, CENTROCUSTO.DESCRICAO,
            CONTASPAGAR.DATA_VENCIMENTO, CONTASPAGARITENS.DATA AS DATAPAGAMENTO,
            FORMASPAGAMENTO.DESCRICAO AS FORMAPAGAMENTO, CONTASPAGARITENS.VALOR
        FROM CONTASPAGAR
        INNER JOIN CONTASPAGARITENS ON CONTASPAGAR.ID = CONTASPAGARITENS.ID_CONTAS_PAGAR
        INNER JOIN FORMASPAGAMENTO ON CONTASPAGARITENS.ID_FORMA_PAGAMENTO = FORMASPAGAMENTO.ID
        LEFT JOIN CENTROCUSTO ON CONTASPAGAR.ID_CENTRO_CUSTO = CENTROCUSTO.ID
        LEFT JOIN FORNECEDORES ON CONTASPAGAR.ID_FORNECEDOR = FORNECEDORES.ID
        LEFT JOIN FUNCIONARIOS ON CONTASPAGAR.ID_FUNCIONARIO = FUNCIONARIOS.ID
        WHERE CONTASPAGAR.ID_CLINICA = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )


def fetch_open_bills(tenant_id: int, db: SourceDatabase) -> List[Record]:
    # ID_STATUS 2 = open
    return db.fetch_all(
        """
        SELECT
            CONTASPAGAR.ID, FUNCIONARIOS.NOME AS FUNCIONARIOS,
            FORNECEDORES.RAZAOSOCIAL AS FORNECEDOR, CENTROCUSTO.DESCRICAO,
            CONTASPAGAR.DATA_VENCIMENTO, CONTASPAGAR.VALOR
        FROM CONTASPAGAR
        LEFT JOIN CENTROCUSTO ON CONTASPAGAR.ID_CENTRO_CUSTO = CENTROCUSTO.ID
        LEFT JOIN FORNECEDORES ON CONTASPAGAR.ID_FORNECEDOR = FORNECEDORES.ID
        LEFT JOIN FUNCIONARIOS ON CONTASPAGAR.ID_FUNCIONARIO = FUNCIONARIOS.ID
        WHERE CONTASPAGAR.ID_CLINICA = :tenant_id
          AND CONTASPAGAR.ID_STATUS = 2
        """,
        {"tenant_id": tenant_id},
    )
